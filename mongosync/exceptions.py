"""
Exception hierarchy for mongosync.
"""


class SyncError(Exception):
    """Base exception for replication errors."""
    pass


class SourceStreamError(SyncError):
    """Change stream could not be opened or was terminated by the source."""
    pass
