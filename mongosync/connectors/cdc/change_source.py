"""
Cluster-wide MongoDB change stream adapter.

Opens a change stream on the source deployment starting at a logical
timestamp and hands it out in batches, each with the resume token that
follows its last event. Any failure to open or read the stream is fatal
and surfaces as SourceStreamError; reconnecting is the caller's decision.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from bson import Timestamp
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from ...exceptions import SourceStreamError
from ...models import ChangeBatch, ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 2000


def start_timestamp(lookback_hours: int, now: Optional[datetime] = None) -> Timestamp:
    """
    Logical timestamp ``lookback_hours`` before ``now``.

    The increment is 1, the first operation recorded in that second.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    start = now - timedelta(hours=lookback_hours)
    return Timestamp(int(start.timestamp()), 1)


class ChangeBatchStream:
    """
    Batched view over an open pymongo ChangeStream.

    Thread Safety: NOT thread-safe. One consumer per stream.
    """

    def __init__(self, stream, batch_size: int = DEFAULT_BATCH_SIZE):
        self._stream = stream
        self.batch_size = batch_size

    def next_batch(self) -> ChangeBatch:
        """
        Block until changes are available or the server-side await expires.

        Collects changes until the server has nothing more to hand out or
        ``batch_size`` is reached. An empty batch means the wait expired
        with no new changes.

        Raises:
            SourceStreamError: If the stream is closed or the source fails
        """
        if not self._stream.alive:
            raise SourceStreamError("Change stream is closed")

        events = []
        try:
            change = self._stream.try_next()
            while change is not None:
                events.append(ChangeEvent.from_change(change))
                if len(events) >= self.batch_size:
                    break
                change = self._stream.try_next()
        except PyMongoError as e:
            raise SourceStreamError(f"Change stream terminated: {e}") from e

        return ChangeBatch(events=events, resume_token=self._stream.resume_token)

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> "ChangeBatchStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ChangeSourceAdapter:
    """
    Open change streams over every database of a source deployment.

    Example:
        >>> adapter = ChangeSourceAdapter(MongoClient(source_uri))
        >>> with adapter.open_stream(start_timestamp(50)) as stream:
        ...     batch = stream.next_batch()
    """

    def __init__(self, client: MongoClient, max_await_time_ms: int = 1000):
        self.client = client
        self.max_await_time_ms = max_await_time_ms

    def open_stream(
        self,
        start_at: Timestamp,
        batch_size: int = DEFAULT_BATCH_SIZE
    ) -> ChangeBatchStream:
        """
        Open a change stream that starts at ``start_at``.

        Update events carry the post-image of the document
        (``full_document="updateLookup"``).

        Raises:
            SourceStreamError: If the stream cannot be opened
        """
        logger.info(
            f"Opening change stream at {start_at.as_datetime().isoformat()}",
            extra={"start_at": str(start_at), "batch_size": batch_size}
        )
        try:
            stream = self.client.watch(
                full_document="updateLookup",
                start_at_operation_time=start_at,
                batch_size=batch_size,
                max_await_time_ms=self.max_await_time_ms
            )
        except PyMongoError as e:
            raise SourceStreamError(f"Failed to open change stream: {e}") from e
        return ChangeBatchStream(stream, batch_size=batch_size)
