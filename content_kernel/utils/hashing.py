"""
Deterministic hashing utilities.

Workflow definitions are fingerprinted so that re-registering an
identical chain is a no-op and a request can prove which chain it ran
against.  All hashing goes through this module.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, whitespace is dropped, and UUID/datetime/enum
    values are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_workflow_definition(definition: Any) -> str:
    """
    Fingerprint a workflow definition (campaign, name and stage layout).

    Stage order is normalised by ``stage_number`` so that two layouts
    describing the same chain hash identically.
    """
    stages = sorted(
        (
            {
                "stage_number": s.stage_number,
                "approver_role": s.approver_role,
                "approver_id": s.approver_id,
                "required": s.required,
            }
            for s in definition.stages
        ),
        key=lambda s: s["stage_number"],
    )
    return hash_payload({
        "campaign_id": definition.campaign_id,
        "name": definition.name,
        "stages": stages,
    })
