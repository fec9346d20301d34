"""
Deterministic hashing utilities.

All hashing in the approval kernel must be deterministic and reproducible.
The action log hash chain depends on canonicalize_json() producing the same
string for the same logical document on every backend.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, datetime):
        if obj.tzinfo is not None:
            obj = obj.astimezone(timezone.utc)
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, there is no whitespace, and datetimes are rendered in
    UTC ISO-8601.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: Any) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_document(document: Any) -> str | None:
    """Fingerprint of an opaque proposed/current state document."""
    if document is None:
        return None
    return hash_payload(document)


def hash_action_payload(
    *,
    request_id: UUID | str,
    sequence: int,
    action_type: str,
    action_by: str,
    actor_role: str | None,
    action_at: datetime,
    justification: str | None,
    previous_status: str | None,
    new_status: str | None,
    state_hash: str | None,
) -> str:
    """Hash of every stored field of an approval action except its chain links."""
    return hash_payload({
        "request_id": str(request_id),
        "sequence": sequence,
        "action_type": action_type,
        "action_by": action_by,
        "actor_role": actor_role,
        "action_at": action_at,
        "justification": justification,
        "previous_status": previous_status,
        "new_status": new_status,
        "state_hash": state_hash,
    })


def hash_action(
    request_id: UUID | str,
    sequence: int,
    action_type: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash for an approval action.

    The hash covers the owning request, the action's position and type, its
    payload hash, and the previous action's hash, creating a tamper-evident
    chain per request.
    """
    components = [
        str(request_id),
        str(sequence),
        action_type,
        payload_hash,
        prev_hash or GENESIS,
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
