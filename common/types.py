"""Shared data type definitions (Customer, ChangeEvent, ReplicaWrite)."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Address(BaseModel):
    """Postal address embedded in a customer record."""
    line1: str
    line2: str
    postcode: str
    city: str
    state: str
    country: str


class Customer(BaseModel):
    """
    Customer record as written to the source collection.
    """
    firstName: str
    lastName: str
    email: str
    address: Address
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_document(self) -> Dict[str, Any]:
        """Build the document to insert; the store assigns ``_id``."""
        return self.model_dump()


class OperationType(str, Enum):
    """Change stream operation types the engine acts upon."""
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"


UPSERT_OPERATIONS = frozenset(op.value for op in (OperationType.INSERT, OperationType.UPDATE, OperationType.REPLACE))


@dataclass(frozen=True)
class ChangeEvent:
    """
    One notification from the source collection's change feed.
    """
    operation_type: str
    document_id: Any
    full_document: Optional[Dict[str, Any]] = None
    resume_token: Optional[Dict[str, Any]] = None

    @classmethod
    def from_change(cls, change: Dict[str, Any]) -> 'ChangeEvent':
        """Parse a raw change stream document."""
        document_key = change.get("documentKey") or {}
        return cls(
            operation_type=change.get("operationType", ""),
            document_id=document_key.get("_id"),
            full_document=change.get("fullDocument"),
            resume_token=change.get("_id"),
        )


@dataclass(frozen=True)
class ReplicaWrite:
    """
    A pending write against the replica: upsert when ``document`` is set,
    delete by identifier otherwise.
    """
    document_id: Any
    document: Optional[Dict[str, Any]] = None

    @property
    def is_delete(self) -> bool:
        return self.document is None
