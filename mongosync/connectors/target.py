"""
Transactional write access to the target deployment.
"""

from typing import Any, Callable, TypeVar
import logging

import pymongo
from pymongo import MongoClient
from pymongo.client_session import ClientSession
from pymongo.collection import Collection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MongoTarget:
    """
    Target document store addressed by (database, collection, _id).

    Every write runs inside its own transaction bounded by
    ``transaction_timeout`` seconds. When the deadline passes pymongo aborts
    the transaction and raises a PyMongoError whose ``timeout`` is True.
    """

    def __init__(self, client: MongoClient, transaction_timeout: float = 2.0):
        self.client = client
        self.transaction_timeout = transaction_timeout

    def collection(self, database: str, collection: str) -> Collection:
        return self.client[database][collection]

    def run_in_transaction(self, callback: Callable[[ClientSession], T]) -> T:
        """Run ``callback(session)`` in one transaction under the deadline."""
        with self.client.start_session() as session:
            with pymongo.timeout(self.transaction_timeout):
                return session.with_transaction(callback)

    def insert(self, database: str, collection: str, document: dict) -> None:
        coll = self.collection(database, collection)
        self.run_in_transaction(lambda s: coll.insert_one(document, session=s))

    def delete(self, database: str, collection: str, document_id: Any) -> int:
        coll = self.collection(database, collection)
        result = self.run_in_transaction(
            lambda s: coll.delete_one({"_id": document_id}, session=s)
        )
        return result.deleted_count

    def replace(self, database: str, collection: str, document_id: Any, document: dict) -> None:
        """Replace the document with ``document_id``, inserting it if absent."""
        coll = self.collection(database, collection)
        self.run_in_transaction(
            lambda s: coll.replace_one({"_id": document_id}, document, upsert=True, session=s)
        )

    def close(self) -> None:
        self.client.close()
