"""
Process-wide state for one replication run.

A session owns the source and target clients and the running counters. It
is never persisted: every run starts ``lookback_hours`` before now, not from
a saved resume token.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional
import logging

from bson import Timestamp
from pymongo import MongoClient

from config.settings import ReplicationSettings
from ..connectors.cdc.change_source import ChangeSourceAdapter, start_timestamp
from ..connectors.target import MongoTarget
from .applier import ChangeApplier
from .db_filter import DatabaseFilter
from .failures import FailureClassifier
from .loop import ReplicationLoop, ReplicationStats

logger = logging.getLogger(__name__)


@dataclass
class ReplicationSession:
    settings: ReplicationSettings
    source_client: MongoClient
    target_client: MongoClient
    started_at: datetime
    start_at: Timestamp
    stats: ReplicationStats = field(default_factory=ReplicationStats)

    @classmethod
    def open(
        cls,
        settings: ReplicationSettings,
        source_client: Optional[MongoClient] = None,
        target_client: Optional[MongoClient] = None
    ) -> "ReplicationSession":
        """Connect both clients and fix the starting point of the stream."""
        started_at = datetime.now(timezone.utc)
        session = cls(
            settings=settings,
            source_client=source_client or MongoClient(settings.source_uri),
            target_client=target_client or MongoClient(settings.target_uri),
            started_at=started_at,
            start_at=start_timestamp(settings.lookback_hours, now=started_at),
        )
        logger.info(
            f"Replicating {', '.join(settings.databases)} from "
            f"{session.start_at.as_datetime().isoformat()}",
            extra={"lookback_hours": settings.lookback_hours, "dry_run": settings.dry_run}
        )
        return session

    @property
    def databases(self) -> FrozenSet[str]:
        return self.settings.database_set

    @property
    def processed(self) -> int:
        return self.stats.processed

    def build_loop(self) -> ReplicationLoop:
        target = MongoTarget(self.target_client, transaction_timeout=self.settings.transaction_timeout)
        applier = ChangeApplier(
            target,
            compare_ids_as_strings=self.settings.compare_ids_as_strings,
            dry_run=self.settings.dry_run,
            max_attempts=self.settings.apply_attempts
        )
        return ReplicationLoop(
            source=ChangeSourceAdapter(self.source_client, max_await_time_ms=self.settings.max_await_time_ms),
            db_filter=DatabaseFilter(self.settings.databases),
            applier=applier,
            classifier=FailureClassifier(),
            batch_size=self.settings.batch_size,
            stats=self.stats
        )

    def run(self, handle_signals: bool = False) -> ReplicationStats:
        return self.build_loop().run(self.start_at, handle_signals=handle_signals)

    def close(self) -> None:
        self.source_client.close()
        self.target_client.close()
        logger.info("Closed source and target connections", extra=self.stats.as_dict())

    def __enter__(self) -> "ReplicationSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
