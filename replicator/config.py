"""Configuration settings for the replicator."""

import os
from typing import Literal, Mapping, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError

from common.constants import (
    CHECKPOINT_PATH,
    DEFAULT_DATABASE_NAME,
    EVENT_QUEUE_SIZE,
    FLUSH_INTERVAL_MS,
    FLUSH_SIZE,
    RECONCILE_BATCH_SIZE,
    REPLICA_COLLECTION_NAME,
    SOURCE_COLLECTION_NAME,
    SUBSTITUTE_LENGTH,
)
from replicator.exceptions import ConfigurationError


class ReplicationSettings(BaseModel):
    """Validated settings for one replicator process."""
    db_uri: str = Field(min_length=1)
    database_name: str = DEFAULT_DATABASE_NAME
    source_collection: str = SOURCE_COLLECTION_NAME
    replica_collection: str = REPLICA_COLLECTION_NAME
    flush_size: int = Field(default=FLUSH_SIZE, gt=0)
    flush_interval_ms: int = Field(default=FLUSH_INTERVAL_MS, gt=0)
    substitute_length: int = Field(default=SUBSTITUTE_LENGTH, gt=0)
    reconcile_batch_size: int = Field(default=RECONCILE_BATCH_SIZE, gt=0)
    anonymization_policy: Literal["seeded", "unseeded"] = "seeded"
    reconcile_strategy: Literal["lookup", "exclusion"] = "lookup"
    checkpoint_path: str = CHECKPOINT_PATH
    resume: bool = True
    queue_size: int = Field(default=EVENT_QUEUE_SIZE, gt=0)

    @property
    def flush_interval(self) -> float:
        """Flush interval in seconds."""
        return self.flush_interval_ms / 1000.0


ENV_VARS = {
    "db_uri": "DB_URI",
    "database_name": "SYNC_DATABASE_NAME",
    "source_collection": "SYNC_SOURCE_COLLECTION",
    "replica_collection": "SYNC_REPLICA_COLLECTION",
    "flush_size": "SYNC_FLUSH_SIZE",
    "flush_interval_ms": "SYNC_FLUSH_INTERVAL_MS",
    "substitute_length": "SYNC_SUBSTITUTE_LENGTH",
    "reconcile_batch_size": "SYNC_RECONCILE_BATCH_SIZE",
    "anonymization_policy": "SYNC_ANONYMIZATION_POLICY",
    "reconcile_strategy": "SYNC_RECONCILE_STRATEGY",
    "checkpoint_path": "SYNC_CHECKPOINT_PATH",
    "resume": "SYNC_RESUME",
    "queue_size": "SYNC_QUEUE_SIZE",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> ReplicationSettings:
    """
    Build settings from environment variables.

    A ``.env`` file in the working directory is loaded first when reading
    the process environment; variables already set take precedence.

    Args:
        environ: Mapping to read instead of ``os.environ``

    Returns:
        Validated ReplicationSettings

    Raises:
        ConfigurationError: If DB_URI is missing or a value is invalid
    """
    if environ is None:
        load_dotenv(find_dotenv(usecwd=True), override=False)
        environ = os.environ

    if not environ.get("DB_URI"):
        raise ConfigurationError("DB_URI is not defined in the environment or .env file")

    values = {
        field: environ[name]
        for field, name in ENV_VARS.items()
        if environ.get(name) not in (None, "")
    }

    try:
        return ReplicationSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid replicator settings: {e}") from e
