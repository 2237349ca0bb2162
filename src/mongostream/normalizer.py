"""
Normalization of raw MongoDB records into canonical change events.

Two record shapes reach the normalizer: plain documents from the snapshot
scan, and change stream envelopes carrying an `operationType`. Both become a
`CanonicalEvent`; `encode_message` turns that into the host-facing message.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from .utils.bson_convert import bson_safe

OPERATION_TYPE_FIELD = "operationType"
DOCUMENT_KEY_FIELD = "documentKey"
FULL_DOCUMENT_FIELD = "fullDocument"

ACTION_INSERT = "insert"
ACTION_DELETE = "delete"

# Host acknowledgement callback: ack(error) -> None
AckFunc = Callable[[Optional[Exception]], None]


@dataclass(frozen=True)
class CanonicalEvent:
    """A normalized change event.

    Attributes:
        action: insert, update, replace, delete or any other operation type
            the change stream reports
        database: Configured database name
        collection: Configured collection name
        payload: Full document, or the document key for deletes
    """
    action: str
    database: str
    collection: str
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "database": self.database,
            "collection": self.collection,
            "payload": self.payload,
        }


@dataclass
class Message:
    """Host message: JSON-encoded payload plus string metadata."""
    body: bytes
    metadata: Dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        return json.loads(self.body)


def normalize(raw: Mapping[str, Any], database: str, collection: str) -> CanonicalEvent:
    """
    Normalize a raw record.

    A record with `operationType` is a change stream envelope: the operation
    type is passed through as the action, deletes carry `documentKey` and
    everything else carries `fullDocument`. A record without it is a snapshot
    document and becomes an insert of the record itself.

    Example:
        >>> normalize({"_id": 5, "name": "a"}, "db", "c").action
        'insert'
    """
    if OPERATION_TYPE_FIELD in raw:
        action = raw[OPERATION_TYPE_FIELD]
        if action == ACTION_DELETE:
            payload = raw.get(DOCUMENT_KEY_FIELD)
        else:
            payload = raw.get(FULL_DOCUMENT_FIELD)
        return CanonicalEvent(action=action, database=database, collection=collection, payload=payload)

    return CanonicalEvent(action=ACTION_INSERT, database=database, collection=collection, payload=raw)


def encode_message(event: CanonicalEvent) -> Message:
    """Serialize an event's payload to JSON bytes and attach its attributes."""
    body = json.dumps(bson_safe(event.payload), default=str).encode("utf-8")
    action = str(event.action)
    return Message(
        body=body,
        metadata={
            "collection": event.collection,
            "database": event.database,
            "event": action,
            # table/schema naming used by SQL-shaped downstream stages
            "table": event.collection,
            "schema": event.database,
        },
    )


def auto_ack(error: Optional[Exception] = None) -> None:
    """Acknowledgement for delivered events; redelivery is left to the host."""
    return None
