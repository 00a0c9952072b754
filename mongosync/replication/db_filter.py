"""
Database allow-list for change events.
"""

from typing import Dict, Iterable, List, Optional

from ..models import ChangeEvent


def belongs_to_target(event: ChangeEvent, configured_databases: Iterable[str]) -> bool:
    """Case-insensitive membership test of the event's database name."""
    name = event.database_name.lower()
    return any(name == db.lower() for db in configured_databases)


class DatabaseFilter:
    """Keeps only changes for the configured databases.

    Surviving events are written to the database as spelled in the
    configuration, so ``SALES`` and ``sales`` land in the same target
    database. Dropped events are not logged.
    """

    def __init__(self, databases: Iterable[str]):
        self._names: Dict[str, str] = {}
        for db in databases:
            self._names.setdefault(db.lower(), db)

    def target_database(self, database_name: str) -> Optional[str]:
        """Configured spelling of ``database_name``, None if not replicated."""
        return self._names.get(database_name.lower())

    def filter(self, events: Iterable[ChangeEvent]) -> List[ChangeEvent]:
        """Surviving events in their original order, tagged with their target database."""
        survivors = []
        for event in events:
            if not belongs_to_target(event, self._names.values()):
                continue
            event.target_database = self.target_database(event.database_name)
            survivors.append(event)
        return survivors
