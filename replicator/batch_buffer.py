"""
Batch buffer for replica writes.

Accumulates anonymized upserts and deletes and flushes them as one bulk
write when the buffer reaches ``flush_size`` or when ``flush_interval``
seconds have passed since the last flush attempt, whichever comes first.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from common.constants import FLUSH_INTERVAL_MS, FLUSH_SIZE
from common.types import ReplicaWrite
from replicator.store import ReplicaCollection

logger = logging.getLogger(__name__)

FlushCallback = Callable[[int, Optional[Dict[str, Any]]], Awaitable[None]]


class BatchBuffer:
    """
    Ordered buffer of pending replica writes with size and timer triggers.

    The pending list is swapped out before the first await of a flush, so
    writes appended while a bulk write is in flight go to a fresh list.
    Bulk writes are serialized in swap order by a FIFO lock.
    """

    def __init__(
        self,
        replica: ReplicaCollection,
        flush_size: int = FLUSH_SIZE,
        flush_interval: float = FLUSH_INTERVAL_MS / 1000.0,
        on_flush: Optional[FlushCallback] = None
    ):
        """
        Initialize the buffer.

        Args:
            replica: Replica collection receiving the bulk writes
            flush_size: Number of pending writes that triggers a flush
            flush_interval: Seconds between timer-driven flush attempts
            on_flush: Awaited after each successful flush with the number of
                writes applied and the newest resume token they cover
        """
        self.replica = replica
        self.flush_size = flush_size
        self.flush_interval = flush_interval
        self.on_flush = on_flush

        self._pending: List[ReplicaWrite] = []
        self._resume_token: Optional[Dict[str, Any]] = None
        self._flushed_token: Optional[Dict[str, Any]] = None
        self._last_flush_at = 0.0
        self._write_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self.failed = False
        self.task: Optional[asyncio.Task] = None
        self.running = False

    def __len__(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        """Start the flush timer."""
        if self.running:
            logger.warning("Batch buffer already running")
            return

        self.running = True
        self._last_flush_at = asyncio.get_running_loop().time()
        self.task = asyncio.create_task(self._timer_loop())
        logger.info(
            f"Batch buffer started [flush_size={self.flush_size}, "
            f"flush_interval={self.flush_interval}s]"
        )

    async def shutdown(self) -> None:
        """
        Stop the flush timer and flush whatever is still pending.

        A timer flush already in progress is allowed to finish first.
        """
        if self.running:
            self.running = False
            self._stopping.set()
            if self.task and not self.task.done():
                await self.task

        await self.flush()
        logger.info("Batch buffer stopped")

    def advance(self, resume_token: Optional[Dict[str, Any]]) -> None:
        """Record the resume token of the newest event seen."""
        if resume_token is not None:
            self._resume_token = resume_token

    async def append(self, write: ReplicaWrite, resume_token: Optional[Dict[str, Any]] = None) -> None:
        """
        Add a write, flushing immediately once the size threshold is reached.

        Args:
            write: Upsert or delete to buffer
            resume_token: Resume token of the event that produced it
        """
        self._pending.append(write)
        self.advance(resume_token)

        if len(self._pending) >= self.flush_size:
            await self.flush()

    async def flush(self) -> int:
        """
        Write all pending writes to the replica.

        Returns:
            Number of writes flushed

        Raises:
            ReplicaWriteError: If the bulk write is rejected
        """
        batch, self._pending = self._pending, []
        token = self._resume_token
        self._last_flush_at = asyncio.get_running_loop().time()

        async with self._write_lock:
            if batch:
                try:
                    upserted, deleted = await self.replica.apply(batch)
                except BaseException:
                    # The batch is gone; no later token may be checkpointed.
                    if not self.failed:
                        logger.warning("Bulk write failed, resume checkpoints disabled for this run")
                    self.failed = True
                    raise
                logger.info(f"Updated {upserted} documents")
                if deleted:
                    logger.info(f"Deleted {deleted} documents")

            if (
                self.on_flush and not self.failed and token is not None
                and (batch or token != self._flushed_token)
            ):
                await self.on_flush(len(batch), token)
                self._flushed_token = token

        return len(batch)

    async def _timer_loop(self) -> None:
        """
        Flush whenever ``flush_interval`` has elapsed since the last attempt.

        Sleeps are cut short by ``shutdown()``; a flush in progress is not.
        A failed flush ends the loop with its error.
        """
        loop = asyncio.get_running_loop()
        while self.running:
            delay = self._last_flush_at + self.flush_interval - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                continue
            await self.flush()

