"""
Core data types for change replication.

A ChangeEvent is the normalized form of one raw change stream document.
ApplyOutcome is the synchronous result of applying one event to the target.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
import time

from bson import Timestamp


class OperationType(str, Enum):
    """Change stream operation types the applier understands."""
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OperationType":
        """Map a raw ``operationType`` string to a member, UNKNOWN if unrecognized."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass
class ChangeEvent:
    """A single captured mutation from the source change stream."""
    operation_type: OperationType
    database_name: str
    collection_name: str
    document_key: Optional[Dict[str, Any]] = None
    full_document: Optional[Dict[str, Any]] = None
    cluster_time: Optional[Timestamp] = None
    resume_token: Optional[Dict[str, Any]] = None
    raw_operation_type: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)
    # Set by the database filter: where on the target this change is written
    target_database: Optional[str] = None

    @classmethod
    def from_change(cls, change: Mapping[str, Any]) -> "ChangeEvent":
        """
        Build an event from a raw change stream document.

        Args:
            change: Document yielded by ``MongoClient.watch()``

        Returns:
            Normalized ChangeEvent
        """
        ns = change.get("ns") or {}
        raw_op = change.get("operationType") or ""
        return cls(
            operation_type=OperationType.parse(raw_op),
            database_name=ns.get("db") or "",
            collection_name=ns.get("coll") or "",
            document_key=change.get("documentKey"),
            full_document=change.get("fullDocument"),
            cluster_time=change.get("clusterTime"),
            resume_token=change.get("_id"),
            raw_operation_type=raw_op,
            raw=dict(change),
        )

    @property
    def namespace(self) -> str:
        return f"{self.database_name}.{self.collection_name}"

    @property
    def document_id(self) -> Any:
        """Identifier of the affected document, from documentKey or fullDocument."""
        if self.document_key and "_id" in self.document_key:
            return self.document_key["_id"]
        if self.full_document and "_id" in self.full_document:
            return self.full_document["_id"]
        return None

    def lag_seconds(self, now: Optional[float] = None) -> int:
        """Seconds between the source commit of this change and ``now``."""
        if self.cluster_time is None:
            return 0
        if now is None:
            now = time.time()
        return int(now) - self.cluster_time.time


@dataclass
class ChangeBatch:
    """One batch pulled from the change stream plus its resume marker."""
    events: List[ChangeEvent]
    resume_token: Optional[Dict[str, Any]] = None

    def __len__(self) -> int:
        return len(self.events)

    @property
    def is_empty(self) -> bool:
        return not self.events


class ApplyStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ApplyOutcome:
    """Result of applying one change event to the target."""
    status: ApplyStatus
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls) -> "ApplyOutcome":
        return cls(ApplyStatus.OK)

    @classmethod
    def skipped(cls, reason: str) -> "ApplyOutcome":
        return cls(ApplyStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, error: BaseException) -> "ApplyOutcome":
        return cls(ApplyStatus.FAILED, reason=type(error).__name__, error=error)
