"""
MongoDB access for the source and replica collections.

Wraps pymongo's asyncio client and translates driver errors into
replicator exceptions at this boundary.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from pymongo import AsyncMongoClient, DeleteOne, ReplaceOne
from pymongo.errors import PyMongoError

from common.types import ReplicaWrite
from replicator.exceptions import ReplicaWriteError, SourceReadError, SubscriptionError

logger = logging.getLogger(__name__)


class SourceCollection:
    """
    Read side of the replication: change feed and backfill scans.
    """

    def __init__(self, collection):
        """
        Args:
            collection: pymongo AsyncCollection holding source records
        """
        self.collection = collection

    @property
    def name(self) -> str:
        return self.collection.name

    async def watch(self, resume_after: Optional[Dict[str, Any]] = None) -> AsyncIterator[Dict[str, Any]]:
        """
        Subscribe to the change feed.

        Update events carry the post-change document (``updateLookup``).

        Args:
            resume_after: Resume token to continue after, if any

        Yields:
            Raw change stream documents in commit order

        Raises:
            SubscriptionError: If the stream cannot be opened or is lost
        """
        try:
            stream = await self.collection.watch(
                full_document="updateLookup",
                resume_after=resume_after
            )
            async with stream:
                async for change in stream:
                    yield change
        except PyMongoError as e:
            raise SubscriptionError(f"Change stream on {self.name} failed: {e}") from e

        raise SubscriptionError(f"Change stream on {self.name} closed")

    async def find_missing(self, replica_name: str, batch_size: int) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream source documents that have no counterpart in the replica.

        Evaluated server-side as a left outer join on ``_id`` keeping only
        unmatched rows.

        Args:
            replica_name: Name of the replica collection in the same database
            batch_size: Cursor batch size

        Yields:
            Source documents absent from the replica
        """
        pipeline = [
            {
                "$lookup": {
                    "from": replica_name,
                    "localField": "_id",
                    "foreignField": "_id",
                    "as": "existingDocuments"
                }
            },
            {"$match": {"existingDocuments": {"$size": 0}}},
            {"$project": {"existingDocuments": 0}},
        ]

        try:
            cursor = await self.collection.aggregate(pipeline, batchSize=batch_size)
            async with cursor:
                async for document in cursor:
                    yield document
        except PyMongoError as e:
            raise SourceReadError(f"Anti-join scan of {self.name} failed: {e}") from e

    async def scan(self, batch_size: int) -> AsyncIterator[Dict[str, Any]]:
        """Stream every source document."""
        try:
            cursor = self.collection.find({}, batch_size=batch_size)
            async with cursor:
                async for document in cursor:
                    yield document
        except PyMongoError as e:
            raise SourceReadError(f"Scan of {self.name} failed: {e}") from e


class ReplicaCollection:
    """
    Write side of the replication.
    """

    def __init__(self, collection):
        """
        Args:
            collection: pymongo AsyncCollection holding anonymized records
        """
        self.collection = collection

    @property
    def name(self) -> str:
        return self.collection.name

    async def apply(self, writes: Sequence[ReplicaWrite]) -> Tuple[int, int]:
        """
        Apply buffered writes in one ordered bulk write.

        Upserts replace the whole document by ``_id``; deletes remove by ``_id``.

        Args:
            writes: Writes in buffer-append order

        Returns:
            Tuple of (upserted or replaced count, deleted count)

        Raises:
            ReplicaWriteError: If the bulk write is rejected
        """
        if not writes:
            return 0, 0

        requests = [
            DeleteOne({"_id": write.document_id}) if write.is_delete
            else ReplaceOne({"_id": write.document_id}, write.document, upsert=True)
            for write in writes
        ]

        try:
            result = await self.collection.bulk_write(requests, ordered=True)
        except PyMongoError as e:
            raise ReplicaWriteError(f"Bulk write of {len(requests)} operations to {self.name} failed: {e}") from e

        return result.upserted_count + result.matched_count, result.deleted_count

    async def insert_many(self, documents: List[Dict[str, Any]]) -> int:
        """
        Insert documents known to be absent from the replica.

        Returns:
            Number of documents inserted

        Raises:
            ReplicaWriteError: If the insert is rejected
        """
        if not documents:
            return 0

        try:
            result = await self.collection.insert_many(documents)
        except PyMongoError as e:
            raise ReplicaWriteError(f"Insert of {len(documents)} documents into {self.name} failed: {e}") from e

        return len(result.inserted_ids)

    async def ids(self, batch_size: int) -> AsyncIterator[Any]:
        """Stream the identifiers present in the replica."""
        try:
            cursor = self.collection.find({}, {"_id": 1}, batch_size=batch_size)
            async with cursor:
                async for document in cursor:
                    yield document["_id"]
        except PyMongoError as e:
            raise SourceReadError(f"Identifier scan of {self.name} failed: {e}") from e


class MongoStore:
    """
    Owns the client connection and hands out collection wrappers.
    """

    def __init__(self, db_uri: str, database_name: str, client=None):
        """
        Args:
            db_uri: MongoDB connection string
            database_name: Database used when the URI names none
            client: Pre-built client (tests)
        """
        self.client = client or AsyncMongoClient(db_uri)
        self.database = self.client.get_default_database(default=database_name)

    async def connect(self) -> None:
        """
        Verify the server is reachable.

        Raises:
            SubscriptionError: If the server cannot be reached
        """
        try:
            await self.client.admin.command("ping")
        except PyMongoError as e:
            raise SubscriptionError(f"Cannot reach MongoDB: {e}") from e

        logger.info(f"Connected to MongoDB database {self.database.name}")

    async def close(self) -> None:
        await self.client.close()

    def source(self, name: str) -> SourceCollection:
        return SourceCollection(self.database[name])

    def replica(self, name: str) -> ReplicaCollection:
        return ReplicaCollection(self.database[name])
