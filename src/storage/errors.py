class StorageError(Exception):
    """Base class for failures talking to the persistence layer."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.message = message
        self.operation = operation


class StoreUnavailableError(StorageError):
    """The store could not be reached (connection refused, timeout, DNS...)."""


class StoreAuthError(StorageError):
    """
    The store rejected our credentials.

    This is the only storage failure that is considered retryable, and only
    after the credentials have been refreshed.
    """


class NotFoundError(StorageError):
    """The requested record does not exist."""


def is_retryable_auth_error(error: Exception) -> bool:
    return isinstance(error, StoreAuthError)
