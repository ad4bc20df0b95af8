import logging
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from .errors import is_retryable_auth_error

logger = logging.getLogger('modelmix.storage.retry')

T = TypeVar("T")


def with_credential_refresh(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """
    Retry a storage method at most once after refreshing the store credentials.

    Only errors classified as retryable auth errors trigger the refresh. Any other
    error, or a second auth failure, propagates to the caller unchanged.
    The decorated method must belong to an object exposing
    ``async refresh_credentials()``.
    """

    @wraps(func)
    async def wrapper(self, *args: Any, **kwargs: Any) -> T:
        try:
            return await func(self, *args, **kwargs)
        except Exception as e:
            if not is_retryable_auth_error(e):
                raise
            logger.warning(f"{func.__name__} failed with an auth error, refreshing credentials and retrying once: {e}")
            await self.refresh_credentials()
            return await func(self, *args, **kwargs)

    return wrapper
