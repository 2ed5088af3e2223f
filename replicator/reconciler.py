"""
Backfill of source records missing from the replica.

Finds every source document whose ``_id`` has no counterpart in the
replica, anonymizes it and inserts it in pages of ``batch_size``.
"""

import logging
from typing import Any, AsyncIterator, Dict, List

from common.constants import RECONCILE_BATCH_SIZE
from replicator.anonymizer import Anonymizer
from replicator.store import ReplicaCollection, SourceCollection

logger = logging.getLogger(__name__)

LOOKUP = "lookup"
EXCLUSION = "exclusion"


class Reconciler:
    """
    One-shot diff-and-backfill job.

    The ``lookup`` strategy streams the anti-join from the server without
    holding identifiers in memory. The ``exclusion`` strategy loads the
    replica identifiers into a set first and filters a full source scan.
    """

    def __init__(
        self,
        source: SourceCollection,
        replica: ReplicaCollection,
        anonymizer: Anonymizer,
        batch_size: int = RECONCILE_BATCH_SIZE,
        strategy: str = LOOKUP
    ):
        if strategy not in (LOOKUP, EXCLUSION):
            raise ValueError(f"Unknown reconcile strategy: {strategy}")

        self.source = source
        self.replica = replica
        self.anonymizer = anonymizer
        self.batch_size = batch_size
        self.strategy = strategy

    async def reconcile(self) -> int:
        """
        Backfill the replica.

        Returns:
            Number of documents inserted

        Raises:
            SourceReadError: If scanning the source or replica fails
            ReplicaWriteError: If inserting a page fails
        """
        logger.info(
            f"Starting reconciliation of {self.source.name} into {self.replica.name} "
            f"[strategy={self.strategy}, batch_size={self.batch_size}]"
        )

        total = 0
        page: List[Dict[str, Any]] = []

        async for document in self._missing_documents():
            page.append(self.anonymizer.anonymize(document))

            if len(page) >= self.batch_size:
                total += await self._insert_page(page)
                page = []

        if page:
            total += await self._insert_page(page)

        logger.info(f"Reconciliation complete: {total} documents backfilled")
        return total

    async def _missing_documents(self) -> AsyncIterator[Dict[str, Any]]:
        if self.strategy == LOOKUP:
            async for document in self.source.find_missing(self.replica.name, self.batch_size):
                yield document
            return

        replica_ids = set()
        async for document_id in self.replica.ids(self.batch_size):
            replica_ids.add(document_id)
        logger.debug(f"Loaded {len(replica_ids)} replica identifiers")

        async for document in self.source.scan(self.batch_size):
            if document["_id"] not in replica_ids:
                yield document

    async def _insert_page(self, page: List[Dict[str, Any]]) -> int:
        inserted = await self.replica.insert_many(page)
        logger.info(
            f"Synchronized {inserted} documents from {self.source.name} to {self.replica.name}"
        )
        return inserted
