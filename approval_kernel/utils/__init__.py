"""Utility modules for the approval kernel."""

from approval_kernel.utils.hashing import (
    canonicalize_json,
    hash_action,
    hash_action_payload,
    hash_document,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "hash_action",
    "hash_action_payload",
    "hash_document",
    "hash_payload",
]
