import asyncio
import threading
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional
from uuid import UUID

from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class QueueState:
    queue_length: int
    processing_count: int
    max_concurrent: int

    @property
    def available_slots(self) -> int:
        return max(0, self.max_concurrent - self.processing_count)


class CheckQueueManager:
    """Admission control for check pipelines.

    At most ``max_concurrent`` pipelines run at once; further checks wait in a
    FIFO queue and start as slots free up. State is guarded by a lock that is
    never held across an await, so ``get_status`` is safe from any thread.
    """

    def __init__(
        self,
        process_check: Callable[[UUID], Awaitable[None]],
        max_concurrent: int = 3,
        on_shutdown_cancel: Optional[Callable[[UUID], object]] = None,
    ):
        """Initialize the manager.

        Args:
            process_check: Coroutine function running one check to completion
            max_concurrent: Maximum number of concurrent pipelines
            on_shutdown_cancel: Called for each in-flight check on shutdown
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._process_check = process_check
        self.max_concurrent = max_concurrent
        self._on_shutdown_cancel = on_shutdown_cancel
        self._queue: Deque[UUID] = deque()
        self._running: Dict[UUID, asyncio.Task] = {}
        self._lock = threading.Lock()
        self._accepting = True
        self._idle = asyncio.Event()
        self._idle.set()

    def submit(self, check_id: UUID) -> bool:
        """Admit a check; start it now or queue it.

        Must be called from the event loop thread.

        Returns:
            False if the check was already queued or running, or the manager
            is shutting down
        """
        with self._lock:
            if not self._accepting or check_id in self._running or check_id in self._queue:
                return False
            self._idle.clear()
            if len(self._running) < self.max_concurrent:
                self._start_locked(check_id)
            else:
                self._queue.append(check_id)
                LOGGER.info(
                    "Check queued",
                    extra={"check_id": str(check_id), "queue_length": len(self._queue)},
                )
        return True

    def cancel(self, check_id: UUID) -> bool:
        """Remove a check that is still waiting in the queue.

        Returns:
            True if the check was queued and has been removed
        """
        with self._lock:
            try:
                self._queue.remove(check_id)
            except ValueError:
                return False
            if not self._queue and not self._running:
                self._idle.set()
        LOGGER.info("Queued check removed", extra={"check_id": str(check_id)})
        return True

    def is_queued(self, check_id: UUID) -> bool:
        with self._lock:
            return check_id in self._queue

    def get_status(self) -> QueueState:
        with self._lock:
            return QueueState(
                queue_length=len(self._queue),
                processing_count=len(self._running),
                max_concurrent=self.max_concurrent,
            )

    async def join(self) -> None:
        """Wait until no check is queued or running."""
        await self._idle.wait()

    async def shutdown(self, grace_seconds: float = 10.0) -> None:
        """Stop admitting checks and wind down in-flight pipelines.

        Queued checks stay pending in the database and are resubmitted on the
        next startup.
        """
        with self._lock:
            self._accepting = False
            dropped = len(self._queue)
            self._queue.clear()
            running = dict(self._running)

        if dropped:
            LOGGER.info(f"Left {dropped} queued checks pending for the next start")

        if self._on_shutdown_cancel is not None:
            for check_id in running:
                self._on_shutdown_cancel(check_id)

        if running:
            _, still_running = await asyncio.wait(running.values(), timeout=grace_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

    def _start_locked(self, check_id: UUID) -> None:
        task = asyncio.get_running_loop().create_task(self._run(check_id))
        self._running[check_id] = task

    async def _run(self, check_id: UUID) -> None:
        try:
            await self._process_check(check_id)
        except Exception:
            LOGGER.error("Unhandled error in check pipeline", exc_info=True, extra={"check_id": str(check_id)})
        finally:
            self._release(check_id)

    def _release(self, check_id: UUID) -> None:
        with self._lock:
            self._running.pop(check_id, None)
            while self._accepting and self._queue and len(self._running) < self.max_concurrent:
                self._start_locked(self._queue.popleft())
            if not self._queue and not self._running:
                self._idle.set()
