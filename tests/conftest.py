"""Shared pytest fixtures for all tests."""

import asyncio
import copy
import itertools

import pytest

from replicator.anonymizer import Anonymizer
from replicator.checkpoint import CheckpointStore
from replicator.config import ReplicationSettings
from replicator.exceptions import ReplicaWriteError


def make_customer(customer_id, first_name="Alice", last_name="Smith", email="alice@example.com"):
    """Build a source customer document."""
    return {
        "_id": customer_id,
        "firstName": first_name,
        "lastName": last_name,
        "email": email,
        "address": {
            "line1": "221B Baker Street",
            "line2": "Apt. 4",
            "postcode": "NW1 6XE",
            "city": "London",
            "state": "LDN",
            "country": "United Kingdom",
        },
        "createdAt": "2024-01-01T00:00:00Z",
    }


class FakeReplicaCollection:
    """In-memory replica with upsert/delete-by-id and plain insert semantics."""

    def __init__(self, name="customers_anonymised"):
        self.name = name
        self.documents = {}
        self.bulk_calls = []
        self.insert_calls = []
        self.fail_with = None

    async def apply(self, writes):
        if self.fail_with:
            raise self.fail_with
        self.bulk_calls.append(list(writes))
        upserted = deleted = 0
        for write in writes:
            if write.is_delete:
                if self.documents.pop(write.document_id, None) is not None:
                    deleted += 1
            else:
                self.documents[write.document_id] = write.document
                upserted += 1
        return upserted, deleted

    async def insert_many(self, documents):
        if self.fail_with:
            raise self.fail_with
        self.insert_calls.append(list(documents))
        for document in documents:
            if document["_id"] in self.documents:
                raise ReplicaWriteError(f"E11000 duplicate key {document['_id']}")
            self.documents[document["_id"]] = document
        return len(documents)

    async def ids(self, batch_size):
        for document_id in list(self.documents):
            yield document_id


class FakeSourceCollection:
    """In-memory source collection with a live change feed."""

    def __init__(self, replica, name="customers"):
        self.name = name
        self.replica = replica
        self.documents = {}
        self.feed = asyncio.Queue()
        self.watch_calls = []
        self._tokens = itertools.count(1)

    def _emit(self, operation_type, document_id, full_document=None):
        change = {
            "_id": {"_data": f"{next(self._tokens):08d}"},
            "operationType": operation_type,
            "documentKey": {"_id": document_id},
        }
        if full_document is not None:
            change["fullDocument"] = copy.deepcopy(full_document)
        self.feed.put_nowait(change)
        return change

    def insert(self, document, emit=True):
        self.documents[document["_id"]] = copy.deepcopy(document)
        if emit:
            return self._emit("insert", document["_id"], document)

    def update(self, document, with_full_document=True):
        self.documents[document["_id"]] = copy.deepcopy(document)
        return self._emit("update", document["_id"], document if with_full_document else None)

    def delete(self, document_id):
        self.documents.pop(document_id, None)
        return self._emit("delete", document_id)

    def redeliver(self, change):
        self.feed.put_nowait(copy.deepcopy(change))

    def fail(self, error):
        self.feed.put_nowait(error)

    async def watch(self, resume_after=None):
        self.watch_calls.append(resume_after)
        while True:
            item = await self.feed.get()
            if isinstance(item, BaseException):
                raise item
            yield item

    async def find_missing(self, replica_name, batch_size):
        assert replica_name == self.replica.name
        for document_id, document in list(self.documents.items()):
            if document_id not in self.replica.documents:
                yield copy.deepcopy(document)

    async def scan(self, batch_size):
        for document in list(self.documents.values()):
            yield copy.deepcopy(document)


class FakeStore:
    """Hands out the fake collections like MongoStore does."""

    def __init__(self, source, replica):
        self._source = source
        self._replica = replica

    def source(self, name):
        return self._source

    def replica(self, name):
        return self._replica


async def wait_for(predicate, timeout=2.0, interval=0.01):
    """Poll until ``predicate()`` is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def replica():
    return FakeReplicaCollection()


@pytest.fixture
def source(replica):
    return FakeSourceCollection(replica)


@pytest.fixture
def fake_store(source, replica):
    return FakeStore(source, replica)


@pytest.fixture
def anonymizer():
    return Anonymizer()


@pytest.fixture
def checkpoint_store(tmp_path):
    """
    Checkpoint store backed by a temporary SQLite file.
    """
    store = CheckpointStore(str(tmp_path / "data" / "checkpoints.db"))
    store.init_database()
    return store


@pytest.fixture
def settings(tmp_path):
    """Settings with short timers suitable for tests."""
    return ReplicationSettings(
        db_uri="mongodb://localhost:27017/customers_db",
        flush_size=1000,
        flush_interval_ms=50,
        reconcile_batch_size=1000,
        checkpoint_path=str(tmp_path / "checkpoints.db"),
    )
