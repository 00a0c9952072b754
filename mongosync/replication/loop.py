"""
The replication loop.

Waits for a batch from the change stream, drops events for databases that
are not replicated, applies the rest one by one in stream order, and logs a
progress line per batch. Only a source stream failure ends the loop early.

States::

    IDLE -> WAITING_FOR_BATCH -> FILTERING -> APPLYING -> WAITING_FOR_BATCH ...
                        \\-> FATAL (source stream error)
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Callable, Optional
import logging
import signal
import time

from bson import Timestamp, json_util

from ..connectors.cdc.change_source import ChangeSourceAdapter, DEFAULT_BATCH_SIZE
from ..exceptions import SourceStreamError
from ..models import ApplyOutcome, ApplyStatus, ChangeBatch, ChangeEvent
from . import metrics
from .applier import ChangeApplier
from .db_filter import DatabaseFilter
from .failures import FailureClassifier, Verdict

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    WAITING_FOR_BATCH = "waiting_for_batch"
    FILTERING = "filtering"
    APPLYING = "applying"
    FATAL = "fatal"


@dataclass
class ReplicationStats:
    """Running counters for one run. ``processed`` counts surviving events only."""
    processed: int = 0
    applied: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
    filtered: int = 0
    batches: int = 0
    empty_batches: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class ReplicationLoop:
    """
    Sequential consumer of the change stream.

    Thread Safety: NOT thread-safe. ``stop()`` may be called from a signal
    handler; the loop exits after the batch in flight.
    """

    def __init__(
        self,
        source: ChangeSourceAdapter,
        db_filter: DatabaseFilter,
        applier: ChangeApplier,
        classifier: Optional[FailureClassifier] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stats: Optional[ReplicationStats] = None,
        clock: Callable[[], float] = time.time
    ):
        self.source = source
        self.db_filter = db_filter
        self.applier = applier
        self.classifier = classifier or FailureClassifier()
        self.batch_size = batch_size
        self.stats = stats if stats is not None else ReplicationStats()
        self.clock = clock
        self.state = LoopState.IDLE
        self.stop_requested = False

        self._original_sigterm = None
        self._original_sigint = None

    def run(self, start_at: Timestamp, handle_signals: bool = False) -> ReplicationStats:
        """
        Consume the change stream from ``start_at`` until stopped (blocking call).

        Args:
            start_at: Logical timestamp the stream starts at
            handle_signals: Install SIGTERM/SIGINT handlers that call ``stop()``

        Returns:
            Counters for the run

        Raises:
            SourceStreamError: If the stream cannot be opened or is terminated
        """
        self.stop_requested = False
        self.state = LoopState.WAITING_FOR_BATCH
        if handle_signals:
            self._setup_signal_handlers()

        try:
            with self.source.open_stream(start_at, self.batch_size) as stream:
                while not self.stop_requested:
                    batch = stream.next_batch()
                    self.process_batch(batch)
        except SourceStreamError as e:
            self.state = LoopState.FATAL
            logger.critical(f"Change stream failed: {e}", extra=self.stats.as_dict())
            raise
        finally:
            if handle_signals:
                self._restore_signal_handlers()

        self.state = LoopState.IDLE
        logger.info("Replication stopped", extra=self.stats.as_dict())
        return self.stats

    def stop(self) -> None:
        logger.info("Stop requested, finishing current batch")
        self.stop_requested = True

    def process_batch(self, batch: ChangeBatch) -> None:
        """Filter and apply one batch, then report progress."""
        self.stats.batches += 1
        if batch.is_empty:
            self.stats.empty_batches += 1
            metrics.batches_total.labels(empty="true").inc()
            logger.info("No changes, skip...")
            self.state = LoopState.WAITING_FOR_BATCH
            return
        metrics.batches_total.labels(empty="false").inc()

        self.state = LoopState.FILTERING
        survivors = self.db_filter.filter(batch.events)
        dropped = len(batch) - len(survivors)
        self.stats.filtered += dropped
        metrics.events_filtered_total.inc(dropped)

        self.state = LoopState.APPLYING
        for event in survivors:
            self.stats.processed += 1
            outcome = self.applier.apply(event)
            self._account(event, outcome)

        lag = batch.events[0].lag_seconds(self.clock())
        metrics.replication_lag_seconds.set(lag)
        logger.info(
            f"{lag}s, {self.stats.processed}, Token={json_util.dumps(batch.resume_token)} "
            f"----------------------------",
            extra={"lag_seconds": lag, "batch_size": len(batch), "survivors": len(survivors)}
        )
        self.state = LoopState.WAITING_FOR_BATCH

    def _account(self, event: ChangeEvent, outcome: ApplyOutcome) -> None:
        if outcome.status == ApplyStatus.OK:
            self.stats.applied += 1
        elif outcome.status == ApplyStatus.SKIPPED:
            self.stats.skipped += 1
            logger.debug(f"Skipped {event.namespace} {event.raw_operation_type}: {outcome.reason}")
        else:
            verdict = self.classifier.classify(outcome.error, event)
            if verdict == Verdict.CONTINUE:
                self.stats.duplicates += 1
            else:
                self.stats.failed += 1

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received shutdown signal {signum}")
            self.stop()

        self._original_sigterm = signal.signal(signal.SIGTERM, signal_handler)
        self._original_sigint = signal.signal(signal.SIGINT, signal_handler)

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if self._original_sigterm is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm)
        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)
