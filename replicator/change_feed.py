"""
Change feed consumer.

A subscription task reads the source change stream and pushes parsed
events into a bounded queue; a consumer task drains the queue in feed
order, anonymizes inserted/updated documents and hands them to the
batch buffer together with deletes.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from common.constants import EVENT_QUEUE_SIZE
from common.types import ChangeEvent, OperationType, ReplicaWrite, UPSERT_OPERATIONS
from replicator.anonymizer import Anonymizer
from replicator.batch_buffer import BatchBuffer
from replicator.exceptions import SubscriptionError
from replicator.store import SourceCollection

logger = logging.getLogger(__name__)

_STOP = object()


class _FeedFailure:
    """Queue marker carrying the error that ended the subscription."""

    def __init__(self, error: BaseException):
        self.error = error


class ChangeFeedConsumer:
    """
    Replicates source changes into the batch buffer until stopped or until
    the feed fails.
    """

    def __init__(
        self,
        source: SourceCollection,
        buffer: BatchBuffer,
        anonymizer: Anonymizer,
        resume_after: Optional[Dict[str, Any]] = None,
        queue_size: int = EVENT_QUEUE_SIZE
    ):
        """
        Initialize the consumer.

        Args:
            source: Source collection to subscribe to
            buffer: Buffer receiving anonymized writes
            anonymizer: Transform applied to every post-change document
            resume_after: Resume token to continue the feed after
            queue_size: Bound of the channel between subscription and consumer
        """
        self.source = source
        self.buffer = buffer
        self.anonymizer = anonymizer
        self.resume_after = resume_after
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.subscription_task: Optional[asyncio.Task] = None
        self.consumer_task: Optional[asyncio.Task] = None
        self.running = False
        self.processed = 0
        self.skipped = 0

    async def run(self) -> None:
        """
        Subscribe once and process events until ``stop()`` is called.

        Raises:
            SubscriptionError: If the feed closes or the connection is lost
            ReplicaWriteError: If a size-triggered or timer flush fails
        """
        if self.running:
            raise RuntimeError("Change feed consumer already running")

        self.running = True
        self.subscription_task = asyncio.create_task(self._subscribe())
        self.consumer_task = asyncio.create_task(self._consume())

        waiters = {self.consumer_task}
        if self.buffer.task:
            waiters.add(self.buffer.task)

        logger.info(f"Listening for changes in the {self.source.name} collection...")

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            self.running = False
            for task in (self.subscription_task, self.consumer_task):
                if not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass

    async def stop(self) -> None:
        """Stop reading the feed; events already queued are still processed."""
        if not self.running:
            return

        if self.subscription_task and not self.subscription_task.done():
            self.subscription_task.cancel()
        await self.queue.put(_STOP)

    async def handle(self, event: ChangeEvent) -> None:
        """
        Route one change event to the buffer.

        Inserts, updates and replaces with a post-change document become
        upserts, deletes become deletes by identifier, everything else only
        advances the resume position.
        """
        if event.operation_type in UPSERT_OPERATIONS:
            if event.full_document is None:
                logger.debug(f"Skipping {event.operation_type} for {event.document_id}: no full document")
                self.skipped += 1
                self.buffer.advance(event.resume_token)
                return

            document = self.anonymizer.anonymize(event.full_document)
            document_id = document.get("_id", event.document_id)
            await self.buffer.append(ReplicaWrite(document_id, document), event.resume_token)

        elif event.operation_type == OperationType.DELETE:
            await self.buffer.append(ReplicaWrite(event.document_id), event.resume_token)

        else:
            logger.debug(f"Ignoring {event.operation_type} event")
            self.skipped += 1
            self.buffer.advance(event.resume_token)
            return

        self.processed += 1

    async def _subscribe(self) -> None:
        try:
            async for change in self.source.watch(resume_after=self.resume_after):
                await self.queue.put(ChangeEvent.from_change(change))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.queue.put(_FeedFailure(e))

    async def _consume(self) -> None:
        while True:
            item = await self.queue.get()

            if item is _STOP:
                logger.info("Change feed consumer stopped")
                return

            if isinstance(item, _FeedFailure):
                if isinstance(item.error, SubscriptionError):
                    raise item.error
                raise SubscriptionError(f"Change feed failed: {item.error}") from item.error

            await self.handle(item)
