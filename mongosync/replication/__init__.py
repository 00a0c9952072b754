"""
Replication core: filter, applier, failure classification and the loop that drives them.
"""

from .applier import ChangeApplier
from .db_filter import DatabaseFilter, belongs_to_target
from .failures import FailureClassifier, FailureKind, Verdict
from .loop import LoopState, ReplicationLoop, ReplicationStats
from .session import ReplicationSession

__all__ = [
    "ChangeApplier",
    "DatabaseFilter",
    "belongs_to_target",
    "FailureClassifier",
    "FailureKind",
    "Verdict",
    "LoopState",
    "ReplicationLoop",
    "ReplicationStats",
    "ReplicationSession",
]
