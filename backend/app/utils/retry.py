import functools
import logging

from fastapi import HTTPException, status
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.repositories.cart_repository import CartConflictError

logger = logging.getLogger(__name__)


def cart_write_retry():
    return retry(
        stop=stop_after_attempt(settings.CART_WRITE_MAX_RETRIES),
        wait=wait_exponential(multiplier=0.02, min=0.02, max=0.5),
        retry=retry_if_exception_type(CartConflictError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )


def serialized_cart_write(func):
    """
    Re-run a cart mutation from the load step when its write lost a version race.

    Gives up with 409 once CART_WRITE_MAX_RETRIES attempts conflicted.
    """
    retrying = cart_write_retry()(func)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await retrying(*args, **kwargs)
        except RetryError as exc:
            logger.warning("Giving up on %s after repeated cart conflicts", func.__name__)
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cart was modified concurrently, please retry"
            ) from exc

    return wrapper
