"""
Top-level coordinator selecting backfill or streaming replication.
"""

import asyncio
import logging
from typing import Optional

from replicator.anonymizer import Anonymizer
from replicator.batch_buffer import BatchBuffer
from replicator.change_feed import ChangeFeedConsumer
from replicator.checkpoint import CheckpointStore
from replicator.config import ReplicationSettings
from replicator.exceptions import ReplicationError
from replicator.reconciler import Reconciler
from replicator.store import MongoStore

logger = logging.getLogger(__name__)

BACKFILL = "backfill"
STREAMING = "streaming"

EXIT_OK = 0
EXIT_FAILURE = 1


class ReplicationController:
    """
    Runs exactly one replication mode per invocation and maps its outcome
    to a process exit status.
    """

    def __init__(
        self,
        settings: ReplicationSettings,
        store: MongoStore,
        checkpoints: Optional[CheckpointStore] = None
    ):
        """
        Initialize the controller.

        Args:
            settings: Validated replicator settings
            store: Connected store providing the source and replica collections
            checkpoints: Resume checkpoint store (defaults to settings.checkpoint_path)
        """
        self.settings = settings
        self.source = store.source(settings.source_collection)
        self.replica = store.replica(settings.replica_collection)
        self.anonymizer = Anonymizer(
            length=settings.substitute_length,
            policy=settings.anonymization_policy
        )
        self.checkpoints = checkpoints or CheckpointStore(settings.checkpoint_path)
        self.stream_name = f"{settings.source_collection}:{settings.replica_collection}"
        self.buffer: Optional[BatchBuffer] = None
        self.consumer: Optional[ChangeFeedConsumer] = None

    async def run(self, mode: str) -> int:
        """
        Run the selected mode to completion.

        Args:
            mode: BACKFILL or STREAMING

        Returns:
            Process exit status
        """
        try:
            if mode == BACKFILL:
                await self.run_backfill()
            elif mode == STREAMING:
                await self.run_streaming()
            else:
                raise ValueError(f"Unknown replication mode: {mode}")
        except ReplicationError as e:
            logger.error(f"Replication failed in {mode} mode: {e}", exc_info=True)
            return EXIT_FAILURE
        except Exception as e:
            logger.error(f"Unexpected error in {mode} mode: {e}", exc_info=True)
            return EXIT_FAILURE

        return EXIT_OK

    async def run_backfill(self) -> int:
        """Backfill every source record missing from the replica."""
        reconciler = Reconciler(
            source=self.source,
            replica=self.replica,
            anonymizer=self.anonymizer,
            batch_size=self.settings.reconcile_batch_size,
            strategy=self.settings.reconcile_strategy
        )
        return await reconciler.reconcile()

    async def run_streaming(self) -> None:
        """
        Replicate the change feed until ``stop()`` is called or the feed fails.

        Pending writes are flushed before returning in both cases.
        """
        self.checkpoints.init_database()

        resume_after = None
        if self.settings.resume:
            resume_after = self.checkpoints.load(self.stream_name)
            if resume_after is not None:
                logger.info(f"Resuming change feed for {self.stream_name} from saved checkpoint")

        self.buffer = BatchBuffer(
            replica=self.replica,
            flush_size=self.settings.flush_size,
            flush_interval=self.settings.flush_interval,
            on_flush=self._save_checkpoint
        )
        self.consumer = ChangeFeedConsumer(
            source=self.source,
            buffer=self.buffer,
            anonymizer=self.anonymizer,
            resume_after=resume_after,
            queue_size=self.settings.queue_size
        )

        await self.buffer.start()
        try:
            await self.consumer.run()
        except BaseException:
            try:
                await self.buffer.shutdown()
            except ReplicationError as flush_error:
                logger.warning(f"Could not flush pending writes during shutdown: {flush_error}")
            raise

        await self.buffer.shutdown()

    async def stop(self) -> None:
        """Ask a running streaming replication to finish."""
        if self.consumer:
            await self.consumer.stop()

    async def _save_checkpoint(self, count: int, resume_token) -> None:
        await asyncio.to_thread(self.checkpoints.save, self.stream_name, resume_token)
