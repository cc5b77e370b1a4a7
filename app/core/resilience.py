"""Deadline and retry handling for store-backed service operations.

Service methods decorated with :func:`storage_operation` accept a
keyword-only ``timeout`` (seconds). On timeout or storage failure the
service session is rolled back, so no partial state is applied. Only
operations declared idempotent are retried.

The deadline ends when the decorated method returns. Events the service
queued on its ``outbox`` after committing are published afterwards, so a
slow relay can never turn a committed write into a reported failure.
"""
import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.core.exceptions import DeadlineExceeded, ServiceError, StorageError

logger = logging.getLogger(__name__)


async def _run_once(
    service: Any,
    func: Callable[..., Awaitable[Any]],
    args: tuple,
    kwargs: dict,
    timeout: Optional[float],
) -> Any:
    try:
        if timeout is None:
            return await func(service, *args, **kwargs)
        return await asyncio.wait_for(func(service, *args, **kwargs), timeout)
    except asyncio.TimeoutError:
        await service.db.rollback()
        logger.warning("%s exceeded its %.3fs deadline", func.__qualname__, timeout)
        raise DeadlineExceeded()
    except ServiceError:
        raise
    except SQLAlchemyError as exc:
        await service.db.rollback()
        logger.error("%s failed in storage: %s", func.__qualname__, exc)
        raise StorageError() from exc


async def _run(
    service: Any,
    func: Callable[..., Awaitable[Any]],
    args: tuple,
    kwargs: dict,
    timeout: Optional[float],
    idempotent: bool,
) -> Any:
    if not idempotent:
        return await _run_once(service, func, args, kwargs, timeout)

    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(settings.storage_retry_attempts),
        wait=wait_exponential(multiplier=settings.storage_retry_backoff, max=2),
        retry=retry_if_exception_type(StorageError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    async for attempt in retrying:
        with attempt:
            return await _run_once(service, func, args, kwargs, timeout)


def storage_operation(idempotent: bool = False):
    """Wrap an async service method with deadline, rollback and retry policy.

    The decorated method's owner must expose its session as ``self.db``,
    and may expose an ``outbox`` of events to publish once it succeeds.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, timeout: Optional[float] = None, **kwargs):
            if timeout is None:
                timeout = settings.default_operation_timeout

            outbox = getattr(self, "outbox", None)
            try:
                result = await _run(self, func, args, kwargs, timeout, idempotent)
            except BaseException:
                if outbox is not None:
                    outbox.discard()
                raise

            if outbox is not None:
                await outbox.flush()
            return result

        return wrapper

    return decorator
