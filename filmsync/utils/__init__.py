"""
Shared utilities package.

Logging configuration used by both the record store API and the sync client.
"""

from filmsync.utils.logging_config import setup_logging, get_logger

__all__ = ['setup_logging', 'get_logger']
