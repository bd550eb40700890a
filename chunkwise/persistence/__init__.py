"""
Persistence: key-value storage, session snapshots and extraction queues.
"""

from chunkwise.persistence.database import Database
from chunkwise.persistence.session_manager import (
    ExtractionQueue,
    ExtractionQueueManager,
    RestoredSession,
    SessionManager,
    build_snapshot,
    generate_fingerprint,
    restore_snapshot,
    sample_segments,
)

__all__ = [
    'Database',
    'ExtractionQueue',
    'ExtractionQueueManager',
    'RestoredSession',
    'SessionManager',
    'build_snapshot',
    'generate_fingerprint',
    'restore_snapshot',
    'sample_segments',
]
