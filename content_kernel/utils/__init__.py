"""Utility modules for the content kernel."""

from content_kernel.utils.hashing import (
    canonicalize_json,
    hash_payload,
    hash_workflow_definition,
)
from content_kernel.utils.locks import KeyedLock

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_workflow_definition",
    "KeyedLock",
]
