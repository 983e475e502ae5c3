"""
Storage sinks used by store steps.

Usage:
    from apiharvest.storage import DiskSink, InMemoryDatabaseSink

    sinks = {"database": InMemoryDatabaseSink(), "disk": DiskSink("/var/data")}
"""

from .sinks import (
    DiskSink,
    InMemoryDatabaseSink,
    RecordSink,
    as_records,
    default_sinks,
    merge_sinks,
)

__all__ = [
    "DiskSink",
    "InMemoryDatabaseSink",
    "RecordSink",
    "as_records",
    "default_sinks",
    "merge_sinks",
]
