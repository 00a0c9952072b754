"""
Classification of per-event apply failures.

Nothing classified here stops replication: a duplicate key is the expected
result of redelivering an insert, everything else is reported and the event
is dropped.
"""

from enum import Enum
import logging

from bson import json_util
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..models import ChangeEvent
from . import metrics

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000


class Verdict(str, Enum):
    CONTINUE = "continue"
    CONTINUE_WITH_WARNING = "continue_with_warning"


class FailureKind(str, Enum):
    DUPLICATE_KEY = "duplicate_key"
    TIMEOUT = "timeout"
    WRITE_ERROR = "write_error"
    UNEXPECTED = "unexpected"


def is_duplicate_key(error: BaseException) -> bool:
    if isinstance(error, DuplicateKeyError):
        return True
    return getattr(error, "code", None) == DUPLICATE_KEY_CODE


def is_timeout(error: BaseException) -> bool:
    return isinstance(error, PyMongoError) and bool(getattr(error, "timeout", False))


def failure_kind(error: BaseException) -> FailureKind:
    if is_duplicate_key(error):
        return FailureKind.DUPLICATE_KEY
    if is_timeout(error):
        return FailureKind.TIMEOUT
    if isinstance(error, PyMongoError):
        return FailureKind.WRITE_ERROR
    return FailureKind.UNEXPECTED


class FailureClassifier:
    """Decides how the loop reacts to a failed apply and logs the context."""

    def classify(self, error: BaseException, event: ChangeEvent) -> Verdict:
        kind = failure_kind(error)
        metrics.apply_errors_total.labels(kind=kind.value).inc()
        lag = event.lag_seconds()

        if kind == FailureKind.DUPLICATE_KEY:
            logger.info(
                f"{lag}s, DupKey={event.document_id}, ignore...",
                extra={"namespace": event.namespace, "failure": kind.value}
            )
            return Verdict.CONTINUE

        context = {
            "namespace": event.namespace,
            "operation": event.raw_operation_type,
            "failure": kind.value,
            "lag_seconds": lag,
        }
        if kind == FailureKind.TIMEOUT:
            logger.error(
                f"{lag}s, #{event.raw_operation_type} Timeout={json_util.dumps(event.document_key)}, "
                f"Message={error}",
                extra=context
            )
        elif kind == FailureKind.WRITE_ERROR:
            logger.error(
                f"{lag}s, #{event.raw_operation_type} {type(error).__name__}={json_util.dumps(event.raw)}",
                extra=context
            )
        else:
            logger.error(
                f"{lag}s, #{event.raw_operation_type} Exception={json_util.dumps(event.document_key)}, "
                f"Type={type(error).__name__}, Message={error}",
                extra=context
            )
        return Verdict.CONTINUE_WITH_WARNING
