"""
Maps change events onto target writes.

Each event is written in its own bounded transaction and the result is
returned as an ApplyOutcome; exceptions never leave ``apply``.

| operationType     | target write                                   |
|-------------------|------------------------------------------------|
| insert            | insert fullDocument                            |
| delete            | delete by documentKey._id                      |
| update, replace   | replace by fullDocument._id, upsert            |
| anything else     | logged, no write                               |
"""

from typing import Any
import logging
import time

from pymongo.errors import ConnectionFailure, PyMongoError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..connectors.target import MongoTarget
from ..models import ApplyOutcome, ChangeEvent, OperationType
from . import metrics
from .failures import is_duplicate_key, is_timeout

logger = logging.getLogger(__name__)


def is_transient(error: BaseException) -> bool:
    """Errors worth another attempt: transient transaction or connection failures."""
    if is_duplicate_key(error) or is_timeout(error):
        return False
    if isinstance(error, ConnectionFailure):
        return True
    return isinstance(error, PyMongoError) and error.has_error_label("TransientTransactionError")


class ChangeApplier:
    """
    Apply one change event at a time to the target.

    Args:
        target: Transactional target store
        compare_ids_as_strings: Match ``_id`` by its string form (default) or by its native value
        dry_run: Log each change instead of writing it
        max_attempts: Attempts for transient errors; retries happen outside the transaction
    """

    def __init__(
        self,
        target: MongoTarget,
        compare_ids_as_strings: bool = True,
        dry_run: bool = False,
        max_attempts: int = 1
    ):
        self.target = target
        self.compare_ids_as_strings = compare_ids_as_strings
        self.dry_run = dry_run
        self._retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception(is_transient),
            wait=wait_exponential(multiplier=0.1, max=2),
            reraise=True
        )

    def apply(self, event: ChangeEvent) -> ApplyOutcome:
        if self.dry_run:
            logger.info(f"{event.lag_seconds()}s {event.namespace} {event.raw_operation_type}")
            return self._record(event, ApplyOutcome.skipped("dry run"))

        if event.operation_type == OperationType.UNKNOWN:
            logger.info(f"Unknown type={event.raw_operation_type}")
            return self._record(event, ApplyOutcome.ok())

        start = time.perf_counter()
        try:
            outcome = self._retrying(self._write, event)
        except Exception as e:
            outcome = ApplyOutcome.failed(e)
        metrics.apply_duration_seconds.observe(time.perf_counter() - start)
        return self._record(event, outcome)

    def match_id(self, value: Any) -> Any:
        """Value used in the ``_id`` filter for delete/update/replace."""
        if self.compare_ids_as_strings:
            return str(value)
        return value

    def _write(self, event: ChangeEvent) -> ApplyOutcome:
        db, coll = event.target_database or event.database_name, event.collection_name
        op = event.operation_type

        if op == OperationType.INSERT:
            if event.full_document is None:
                return ApplyOutcome.skipped("insert without fullDocument")
            self.target.insert(db, coll, event.full_document)

        elif op == OperationType.DELETE:
            if not event.document_key or "_id" not in event.document_key:
                return ApplyOutcome.skipped("delete without documentKey._id")
            self.target.delete(db, coll, self.match_id(event.document_key["_id"]))

        else:
            # update/replace; fullDocument is None when the document was deleted before lookup
            if event.full_document is None:
                return ApplyOutcome.skipped(f"{op.value} without fullDocument")
            document_id = self.match_id(event.full_document["_id"])
            self.target.replace(db, coll, document_id, event.full_document)

        return ApplyOutcome.ok()

    def _record(self, event: ChangeEvent, outcome: ApplyOutcome) -> ApplyOutcome:
        metrics.events_applied_total.labels(
            database=event.database_name,
            operation=event.operation_type.value,
            outcome=outcome.status.value
        ).inc()
        return outcome
