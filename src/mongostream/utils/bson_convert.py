"""
BSON to JSON-serializable converter utility.

Converts MongoDB BSON types to JSON-serializable Python types.
"""

from bson import ObjectId, Decimal128, Timestamp
from datetime import datetime
import base64
import uuid
from typing import Any


def bson_safe(value: Any) -> Any:
    """
    Recursively convert BSON types to JSON-serializable Python types.

    Handles:
    - ObjectId -> str
    - datetime -> ISO string
    - Decimal128 -> str
    - Timestamp -> {"t": seconds, "i": increment}
    - UUID -> str
    - bytes / Binary -> base64 string
    - Nested dicts and lists

    Args:
        value: Value to convert (can be any BSON type)

    Returns:
        JSON-serializable Python value

    Example:
        >>> from bson import ObjectId
        >>> doc = {"_id": ObjectId(), "name": "test"}
        >>> safe = bson_safe(doc)
        >>> isinstance(safe["_id"], str)
        True
    """
    if value is None:
        return None

    if isinstance(value, ObjectId):
        return str(value)

    if isinstance(value, datetime):
        return value.isoformat()

    if isinstance(value, Decimal128):
        return str(value)

    if isinstance(value, Timestamp):
        return {"t": value.time, "i": value.inc}

    if isinstance(value, uuid.UUID):
        return str(value)

    # bson.Binary subclasses bytes
    if isinstance(value, bytes):
        return base64.b64encode(value).decode('ascii')

    if isinstance(value, dict):
        return {k: bson_safe(v) for k, v in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [bson_safe(v) for v in value]

    return value
