"""
CDC (Change Data Capture) module for MongoDB changestream consumption.
"""

from .change_source import ChangeSourceAdapter, ChangeBatchStream, start_timestamp, DEFAULT_BATCH_SIZE

__all__ = [
    "ChangeSourceAdapter",
    "ChangeBatchStream",
    "start_timestamp",
    "DEFAULT_BATCH_SIZE",
]
