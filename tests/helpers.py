"""Builders for raw change documents and an in-memory target."""

from typing import Any, Dict, Optional
import time

import mongomock
from bson import Timestamp

from mongosync.connectors.target import MongoTarget
from mongosync.models import ChangeEvent


class InMemoryTarget(MongoTarget):
    """MongoTarget over mongomock; mongomock has no sessions, so writes run without one."""

    def __init__(self, client=None):
        super().__init__(client or mongomock.MongoClient(), transaction_timeout=2.0)
        self.transactions = 0

    def run_in_transaction(self, callback):
        self.transactions += 1
        return callback(None)


def make_change(
    op: str,
    db: str,
    doc_id: Any,
    doc: Optional[Dict[str, Any]] = None,
    coll: str = "docs",
    cluster_seconds: Optional[int] = None,
    token: str = "0001"
) -> Dict[str, Any]:
    """Raw change stream document as pymongo yields it."""
    if cluster_seconds is None:
        cluster_seconds = int(time.time())
    change = {
        "_id": {"_data": token},
        "operationType": op,
        "clusterTime": Timestamp(cluster_seconds, 1),
        "ns": {"db": db, "coll": coll},
        "documentKey": {"_id": doc_id},
    }
    if doc is not None:
        change["fullDocument"] = dict(doc, _id=doc_id)
    return change


def make_event(*args, **kwargs) -> ChangeEvent:
    return ChangeEvent.from_change(make_change(*args, **kwargs))
