"""
filmsync: offline-first synchronization of film-tracking state.

This package contains the server-side record store (database + HTTP API),
the client-side local state cache and sync coordinator, and the record types
they share.
"""

__version__ = "1.0.0"
