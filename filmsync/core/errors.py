"""
Error taxonomy for the synchronization layer.

Stale writes are not errors: the record store reports them as an
``UpsertOutcome.STALE`` result. Everything here is raised for conditions
the caller has to react to.
"""


class SyncError(Exception):
    """Base class for synchronization errors."""


class TransportError(SyncError):
    """
    The record store could not be reached or did not answer in time.

    Covers timeouts, connection failures and server-side errors. Always
    recoverable: the change stays queued and is retried with backoff.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class IdentityMissingError(SyncError):
    """No signed-in user, or the record store refused the identity."""


class RejectedChangeError(SyncError):
    """The record store refused a change as invalid (not a transport failure)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LocalPersistenceError(SyncError):
    """The durable local store is unavailable or its contents are unreadable."""
