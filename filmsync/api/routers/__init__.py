"""
API route handlers.
"""

from filmsync.api.routers import users, film_statuses, preferences, sync, system

__all__ = ["users", "film_statuses", "preferences", "sync", "system"]
