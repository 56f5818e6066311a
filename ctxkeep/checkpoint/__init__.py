"""Checkpoint stores - durable, thread-scoped conversation snapshots."""

from .base import BaseCheckpointStore
from .file import FileCheckpointStore
from .http import HttpCheckpointStore
from .memory import MemoryCheckpointStore
from .sqlite import SqliteCheckpointStore
from .types import Checkpoint, OutOfOrderPolicy, RetentionHook, keep_last

__all__ = [
    "BaseCheckpointStore",
    "Checkpoint",
    "FileCheckpointStore",
    "HttpCheckpointStore",
    "MemoryCheckpointStore",
    "OutOfOrderPolicy",
    "RetentionHook",
    "SqliteCheckpointStore",
    "keep_last",
]
