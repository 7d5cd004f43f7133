"""
Processing queue for RelayBot auto-reply.

Provides:
- Bounded admission with backpressure
- Priority tiers, FIFO within a tier
- Concurrency-limited handler execution
- Retry at the front of the item's tier
"""

import asyncio
import inspect
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable

from loguru import logger

from relaybot.utils.helpers import generate_id


class Priority(IntEnum):
    """Priority tiers, higher drains first."""
    HIGH = 10  # Owner / privileged senders
    NORMAL = 5  # Recognized commands
    LOW = 1  # Conversational messages
    BACKGROUND = 0  # Internal maintenance


class ItemState(str, Enum):
    """Lifecycle of a queue item."""
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    DROPPED = "dropped"


# Handler invoked with the item payload
ItemHandler = Callable[[Any], Awaitable[Any]]

# Called once when an item exhausts its retries
FailureCallback = Callable[["QueueItem", BaseException], Awaitable[None]]


@dataclass
class QueueConfig:
    """Configuration for the processing queue."""
    max_size: int = 1000  # Max pending items
    max_concurrent: int = 50  # Max handlers in flight
    max_retries: int = 3


@dataclass
class QueueItem:
    """A unit of work owned by the queue."""
    id: str
    payload: Any
    handler: ItemHandler
    priority: int = Priority.NORMAL
    timestamp: float = field(default_factory=time.time)
    retries: int = 0
    max_retries: int = 3
    state: ItemState = ItemState.QUEUED
    last_error: str = ""


class ProcessingQueue:
    """
    Bounded priority queue that runs handlers with limited concurrency.

    Bookkeeping (submit, dequeue, requeue) is synchronous, so it is atomic
    with respect to other queue operations on the event loop. Handlers run
    as tasks; at most ``max_concurrent`` are in flight at once.
    """

    def __init__(
        self,
        config: QueueConfig | None = None,
        on_failure: FailureCallback | None = None,
    ):
        self.config = config or QueueConfig()
        if self.config.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._on_failure = on_failure

        # priority -> items, front is next to run
        self._tiers: dict[int, deque[QueueItem]] = {}
        self._length = 0

        self._in_flight = 0
        self._tasks: set[asyncio.Task] = set()

        # Guards against re-entrant drains
        self._processing = False
        self._paused = False
        self._accepting = True
        self._idle = asyncio.Event()
        self._idle.set()

        # Stats
        self._submitted = 0
        self._processed = 0
        self._failed = 0
        self._retried = 0
        self._rejected = 0
        self._start_time = time.time()

    def set_failure_callback(self, callback: FailureCallback | None) -> None:
        """Set the callback awaited when an item exhausts its retries."""
        self._on_failure = callback

    def submit(
        self,
        payload: Any,
        handler: ItemHandler,
        priority: int = Priority.NORMAL,
    ) -> bool:
        """
        Admit a unit of work.

        Must be called from within the running event loop.

        Args:
            payload: Opaque data passed to the handler.
            handler: Async function invoked with the payload.
            priority: Integer priority, higher runs sooner.

        Returns:
            True if accepted, False if dropped (queue full or shutting down).
        """
        if not self._accepting:
            logger.debug("Queue is shutting down, rejecting submission")
            self._rejected += 1
            return False

        if self._length >= self.config.max_size:
            logger.warning("Queue is full, dropping message")
            self._rejected += 1
            return False

        item = QueueItem(
            id=generate_id(),
            payload=payload,
            handler=handler,
            priority=int(priority),
            max_retries=self.config.max_retries,
        )
        self._push(item)
        self._submitted += 1

        self._drain()
        return True

    def _push(self, item: QueueItem, front: bool = False) -> None:
        tier = self._tiers.get(item.priority)
        if tier is None:
            tier = self._tiers[item.priority] = deque()
        if front:
            tier.appendleft(item)
        else:
            tier.append(item)
        item.state = ItemState.QUEUED
        self._length += 1
        self._idle.clear()

    def _pop(self) -> QueueItem | None:
        for priority in sorted(self._tiers, reverse=True):
            tier = self._tiers[priority]
            if tier:
                self._length -= 1
                item = tier.popleft()
                if not tier:
                    del self._tiers[priority]
                return item
        return None

    def _drain(self) -> None:
        """Start as many queued items as the concurrency limit allows."""
        if self._processing or self._paused:
            return

        self._processing = True
        try:
            while self._length and self._in_flight < self.config.max_concurrent:
                item = self._pop()
                if item is None:
                    break
                item.state = ItemState.IN_FLIGHT
                self._in_flight += 1
                task = asyncio.create_task(self._run(item))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            self._processing = False
            self._update_idle()

    async def _run(self, item: QueueItem) -> None:
        start = time.perf_counter()
        try:
            result = item.handler(item.payload)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            item.state = ItemState.DROPPED
            raise
        except Exception as e:
            await self._handle_error(item, e)
        else:
            item.state = ItemState.DONE
            self._processed += 1
            duration_ms = (time.perf_counter() - start) * 1000
            logger.debug(f"Processed {item.id} in {duration_ms:.0f}ms")
        finally:
            self._in_flight -= 1
            if self._accepting or self._length:
                self._drain()
            self._update_idle()

    async def _handle_error(self, item: QueueItem, error: Exception) -> None:
        item.last_error = str(error)

        if item.retries < item.max_retries:
            item.retries += 1
            item.timestamp = time.time()
            self._retried += 1
            self._push(item, front=True)
            logger.warning(f"Retrying {item.id} ({item.retries}/{item.max_retries}): {error}")
            return

        item.state = ItemState.DROPPED
        self._failed += 1
        logger.error(f"Failed to process {item.id} after {item.max_retries} retries: {error}")

        if self._on_failure:
            try:
                await self._on_failure(item, error)
            except Exception as e:
                logger.error(f"Queue failure callback error: {e}")

    def _update_idle(self) -> None:
        if self._length == 0 and self._in_flight == 0:
            self._idle.set()
        else:
            self._idle.clear()

    def pause(self) -> None:
        """Stop starting new items. In-flight items keep running."""
        self._paused = True
        logger.info("Queue paused")

    def resume(self) -> None:
        """Resume draining."""
        self._paused = False
        logger.info("Queue resumed")
        self._drain()

    def clear(self) -> int:
        """
        Abandon every queued (not in-flight) item.

        Returns:
            Number of items abandoned.
        """
        abandoned = self._length
        for tier in self._tiers.values():
            for item in tier:
                item.state = ItemState.DROPPED
        self._tiers.clear()
        self._length = 0
        self._update_idle()
        if abandoned:
            logger.info(f"Queue cleared, {abandoned} items abandoned")
        return abandoned

    async def join(self, timeout: float | None = None) -> bool:
        """
        Wait until nothing is queued or in flight.

        Returns:
            True if the queue became idle, False on timeout.
        """
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def shutdown(self, drain: bool = True, timeout: float | None = 30.0) -> int:
        """
        Stop accepting work and finish or abandon what remains.

        Args:
            drain: Let queued items run to completion first.
            timeout: Max seconds to wait for the drain.

        Returns:
            Number of items abandoned.
        """
        self._accepting = False
        if self._paused and drain:
            self.resume()

        if drain and await self.join(timeout):
            logger.info("Queue drained")
            return 0

        abandoned = self.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            abandoned += len(tasks)
        self._update_idle()
        logger.info(f"Queue shut down, {abandoned} items abandoned")
        return abandoned

    @property
    def size(self) -> int:
        """Number of queued (not in-flight) items."""
        return self._length

    @property
    def in_flight(self) -> int:
        """Number of handlers currently executing."""
        return self._in_flight

    @property
    def is_empty(self) -> bool:
        """Check if nothing is queued."""
        return self._length == 0

    @property
    def is_accepting(self) -> bool:
        """Check if new submissions are admitted."""
        return self._accepting

    def snapshot(self) -> list[QueueItem]:
        """Queued items in the order they would be dequeued."""
        items: list[QueueItem] = []
        for priority in sorted(self._tiers, reverse=True):
            items.extend(self._tiers[priority])
        return items

    def get_status(self) -> dict[str, Any]:
        """Get the current scheduling state."""
        return {
            "is_processing": self._processing,
            "paused": self._paused,
            "accepting": self._accepting,
            "queue_length": self._length,
            "in_flight": self._in_flight,
            "concurrent_limit": self.config.max_concurrent,
        }

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        uptime = time.time() - self._start_time
        finished = self._processed + self._failed
        return {
            "processed": self._processed,
            "failed": self._failed,
            "retried": self._retried,
            "rejected": self._rejected,
            "submitted": self._submitted,
            "queued": self._length,
            "in_flight": self._in_flight,
            "uptime_seconds": uptime,
            "processed_per_minute": round(self._processed / uptime * 60) if uptime > 0 else 0,
            "success_rate": round(self._processed / finished * 100) if finished else 0,
        }
