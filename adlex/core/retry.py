import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


async def _interruptible_sleep(delay: float, cancel_event: Optional[asyncio.Event]) -> None:
    """Sleep for ``delay`` seconds, returning early if ``cancel_event`` is set."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt + 1`` (0-based): base * 2^attempt."""
    return base_delay * (2 ** attempt)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    cancel_event: Optional[asyncio.Event] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` with bounded exponential-backoff retries.

    The operation runs at most ``max_retries + 1`` times. Between attempts the
    loop waits ``base_delay * 2^attempt`` seconds; setting ``cancel_event``
    aborts the wait and any further attempt.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Retries after the first attempt
        base_delay: Base delay in seconds
        retry_on: Exception types that trigger another attempt
        cancel_event: Optional cancellation signal
        sleep: Optional sleep override (used by tests to record delays)
        operation_name: Label for log messages

    Returns:
        The operation's result

    Raises:
        asyncio.CancelledError: If ``cancel_event`` is set before success
        Exception: The last error once retries are exhausted
    """
    last_error: Optional[BaseException] = None

    for attempt in range(max_retries + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise asyncio.CancelledError(f"{operation_name} cancelled")

        try:
            return await operation()
        except retry_on as e:
            last_error = e
            LOGGER.warning(
                f"{operation_name} failed (attempt {attempt + 1}/{max_retries + 1}): {e}",
                extra={"attempt": attempt + 1, "max_attempts": max_retries + 1},
            )

        if attempt < max_retries:
            delay = backoff_delay(attempt, base_delay)
            if sleep is not None:
                await sleep(delay)
            else:
                await _interruptible_sleep(delay, cancel_event)

    assert last_error is not None
    raise last_error
