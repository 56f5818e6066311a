"""Utility functions for ctxkeep."""

from .locks import KeyedLocks
from .retry import retry_with_backoff
from .serializer import deserialize, is_json_serializable, json_serialize, serialize

__all__ = [
    "KeyedLocks",
    "deserialize",
    "is_json_serializable",
    "json_serialize",
    "retry_with_backoff",
    "serialize",
]
