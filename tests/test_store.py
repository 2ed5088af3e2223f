"""Tests for the pymongo store adapter."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import DeleteOne, ReplaceOne
from pymongo.errors import AutoReconnect, OperationFailure

from common.types import ReplicaWrite
from replicator.exceptions import ReplicaWriteError, SourceReadError, SubscriptionError
from replicator.store import MongoStore, ReplicaCollection, SourceCollection


class FakeCursor:
    """Async cursor/change stream stand-in."""

    def __init__(self, items, error=None):
        self.items = list(items)
        self.error = error
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.items:
            yield item
        if self.error:
            raise self.error


def _collection(name):
    collection = MagicMock()
    collection.name = name
    return collection


async def _collect(iterator):
    return [item async for item in iterator]


class TestReplicaCollection:
    """Test bulk writes against the replica."""

    @pytest.mark.asyncio
    async def test_apply_builds_ordered_bulk_write(self):
        collection = _collection("customers_anonymised")
        collection.bulk_write = AsyncMock(return_value=MagicMock(
            upserted_count=1, matched_count=1, deleted_count=1
        ))
        replica = ReplicaCollection(collection)

        result = await replica.apply([
            ReplicaWrite(1, {"_id": 1, "firstName": "x"}),
            ReplicaWrite(2, {"_id": 2, "firstName": "y"}),
            ReplicaWrite(3),
        ])

        assert result == (2, 1)
        collection.bulk_write.assert_awaited_once_with([
            ReplaceOne({"_id": 1}, {"_id": 1, "firstName": "x"}, upsert=True),
            ReplaceOne({"_id": 2}, {"_id": 2, "firstName": "y"}, upsert=True),
            DeleteOne({"_id": 3}),
        ], ordered=True)

    @pytest.mark.asyncio
    async def test_apply_nothing_skips_write(self):
        collection = _collection("customers_anonymised")
        collection.bulk_write = AsyncMock()

        assert await ReplicaCollection(collection).apply([]) == (0, 0)
        collection.bulk_write.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_apply_failure_wrapped(self):
        collection = _collection("customers_anonymised")
        collection.bulk_write = AsyncMock(side_effect=OperationFailure("E11000 duplicate key"))

        with pytest.raises(ReplicaWriteError, match="E11000"):
            await ReplicaCollection(collection).apply([ReplicaWrite(1, {"_id": 1})])

    @pytest.mark.asyncio
    async def test_insert_many(self):
        collection = _collection("customers_anonymised")
        collection.insert_many = AsyncMock(return_value=MagicMock(inserted_ids=[1, 2]))

        inserted = await ReplicaCollection(collection).insert_many([{"_id": 1}, {"_id": 2}])

        assert inserted == 2
        collection.insert_many.assert_awaited_once_with([{"_id": 1}, {"_id": 2}])

    @pytest.mark.asyncio
    async def test_insert_failure_wrapped(self):
        collection = _collection("customers_anonymised")
        collection.insert_many = AsyncMock(side_effect=AutoReconnect("connection closed"))

        with pytest.raises(ReplicaWriteError):
            await ReplicaCollection(collection).insert_many([{"_id": 1}])

    @pytest.mark.asyncio
    async def test_ids(self):
        collection = _collection("customers_anonymised")
        collection.find = MagicMock(return_value=FakeCursor([{"_id": 1}, {"_id": 2}]))

        ids = await _collect(ReplicaCollection(collection).ids(500))

        assert ids == [1, 2]
        collection.find.assert_called_once_with({}, {"_id": 1}, batch_size=500)


class TestSourceCollection:
    """Test change feed and scans of the source."""

    @pytest.mark.asyncio
    async def test_watch_requests_full_documents(self):
        collection = _collection("customers")
        stream = FakeCursor([{"operationType": "insert"}], error=AutoReconnect("lost"))
        collection.watch = AsyncMock(return_value=stream)
        source = SourceCollection(collection)

        changes = []
        with pytest.raises(SubscriptionError, match="lost"):
            async for change in source.watch(resume_after={"_data": "01"}):
                changes.append(change)

        assert changes == [{"operationType": "insert"}]
        assert stream.closed
        collection.watch.assert_awaited_once_with(full_document="updateLookup", resume_after={"_data": "01"})

    @pytest.mark.asyncio
    async def test_watch_end_is_an_error(self):
        collection = _collection("customers")
        collection.watch = AsyncMock(return_value=FakeCursor([]))

        with pytest.raises(SubscriptionError, match="closed"):
            await _collect(SourceCollection(collection).watch())

    @pytest.mark.asyncio
    async def test_find_missing_pipeline(self):
        collection = _collection("customers")
        collection.aggregate = AsyncMock(return_value=FakeCursor([{"_id": 5}]))

        documents = await _collect(SourceCollection(collection).find_missing("customers_anonymised", 1000))

        assert documents == [{"_id": 5}]
        pipeline = collection.aggregate.await_args.args[0]
        assert pipeline[0]["$lookup"] == {
            "from": "customers_anonymised",
            "localField": "_id",
            "foreignField": "_id",
            "as": "existingDocuments",
        }
        assert pipeline[1] == {"$match": {"existingDocuments": {"$size": 0}}}
        assert pipeline[2] == {"$project": {"existingDocuments": 0}}
        assert collection.aggregate.await_args.kwargs == {"batchSize": 1000}

    @pytest.mark.asyncio
    async def test_find_missing_failure_wrapped(self):
        collection = _collection("customers")
        collection.aggregate = AsyncMock(side_effect=OperationFailure("timeout"))

        with pytest.raises(SourceReadError):
            await _collect(SourceCollection(collection).find_missing("customers_anonymised", 1000))

    @pytest.mark.asyncio
    async def test_scan(self):
        collection = _collection("customers")
        collection.find = MagicMock(return_value=FakeCursor([{"_id": 1}, {"_id": 2}]))

        documents = await _collect(SourceCollection(collection).scan(100))

        assert documents == [{"_id": 1}, {"_id": 2}]
        collection.find.assert_called_once_with({}, batch_size=100)


class TestMongoStore:
    """Test client ownership."""

    def _store(self):
        client = MagicMock()
        database = MagicMock()
        database.name = "customers_db"
        database.__getitem__.side_effect = lambda name: _collection(name)
        client.get_default_database.return_value = database
        client.admin.command = AsyncMock(return_value={"ok": 1})
        client.close = AsyncMock()
        return MongoStore("mongodb://localhost:27017", "customers_db", client=client), client

    def test_default_database_fallback(self):
        store, client = self._store()

        client.get_default_database.assert_called_once_with(default="customers_db")
        assert store.source("customers").name == "customers"
        assert store.replica("customers_anonymised").name == "customers_anonymised"

    @pytest.mark.asyncio
    async def test_connect_pings(self):
        store, client = self._store()

        await store.connect()

        client.admin.command.assert_awaited_once_with("ping")

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        store, client = self._store()
        client.admin.command.side_effect = AutoReconnect("no servers")

        with pytest.raises(SubscriptionError):
            await store.connect()

    @pytest.mark.asyncio
    async def test_close(self):
        store, client = self._store()

        await store.close()

        client.close.assert_awaited_once()
