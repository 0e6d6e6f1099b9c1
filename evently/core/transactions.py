"""
Units of work with bounded retry on transient store failures.

Each attempt runs in a fresh session and a single transaction. Transient
database errors become ``StoreUnavailable`` and the whole attempt is rolled
back and retried with exponential backoff; domain errors propagate at once.
"""
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from evently.config import get_settings
from evently.core.errors import StoreUnavailable
from evently.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSIENT_STORE_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
)


def is_transient(error: BaseException) -> bool:
    """Classify a SQLAlchemy error as retryable."""
    if isinstance(error, TRANSIENT_STORE_ERRORS):
        return True
    return isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        metrics.record_store_retry(operation)
        logger.warning(
            "store_unavailable_retrying",
            operation=operation,
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    return _before_sleep


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
    work: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """
    Run ``work`` inside one transaction, retrying transient store failures.

    Args:
        session_factory: Session factory to open a session per attempt
        operation: Name used in logs and metrics
        work: Coroutine function receiving the session

    Returns:
        Whatever ``work`` returns, after the transaction committed

    Raises:
        StoreUnavailable: If every attempt hit a transient failure
        DomainError: Propagated from ``work`` without retry
    """
    settings = get_settings()
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(StoreUnavailable),
        stop=stop_after_attempt(settings.store_retry_max_attempts),
        wait=wait_exponential(
            multiplier=settings.store_retry_base_delay,
            max=settings.store_retry_max_delay,
        ),
        before_sleep=_log_retry(operation),
        reraise=True,
    )

    result: Any = None
    async for attempt in retrying:
        with attempt:
            result = await _attempt(session_factory, operation, work)
    return result


async def _attempt(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
    work: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    try:
        async with session_factory() as db:
            async with db.begin():
                return await work(db)
    except sa_exc.SQLAlchemyError as e:
        if is_transient(e):
            raise StoreUnavailable(operation, str(e)) from e
        raise
