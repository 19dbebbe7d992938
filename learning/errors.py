"""
Error taxonomy for progress persistence and session lifecycle
"""


class StoreError(Exception):
    """Base class for aggregate store failures"""


class StoreUnavailable(StoreError):
    """Backend or network is down; the caller retries later"""


class Unauthenticated(StoreError):
    """No signed-in user, or the backend rejected the credentials"""


class StoreConflict(StoreError):
    """Concurrent writer detected (not produced under single-writer use)"""


class UserActionError(Exception):
    """Failure of an explicit user-initiated operation.

    The message is meant to be shown to the user as-is.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class SessionError(RuntimeError):
    """Misuse of the session lifecycle"""


class SessionActiveError(SessionError):
    pass


class NoActiveSessionError(SessionError):
    pass
