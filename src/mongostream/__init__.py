"""
MongoDB change data capture input: snapshot then change stream tail, pulled
one event at a time.
"""

from .channel import DeliveryChannel
from .config import MongoStreamConfig, MongoStreamSettings, get_settings, reload_settings
from .connector import ConnectorState, MongoStreamInput
from .errors import (
    CDCError,
    ConnectError,
    ConnectorStateError,
    DecodeError,
    EndOfInput,
    ReadError,
    ReadTimeoutError,
    SourceIterationError,
)
from .normalizer import CanonicalEvent, Message, encode_message, normalize
from .pump import IngestionPump
from .registry import InputRegistry, register_mongodb_stream
from .sources import ChangeTail, RecordSource, SnapshotCursor

__version__ = "0.1.0"

__all__ = [
    "CanonicalEvent",
    "CDCError",
    "ChangeTail",
    "ConnectError",
    "ConnectorState",
    "ConnectorStateError",
    "DecodeError",
    "DeliveryChannel",
    "EndOfInput",
    "IngestionPump",
    "InputRegistry",
    "Message",
    "MongoStreamConfig",
    "MongoStreamInput",
    "MongoStreamSettings",
    "ReadError",
    "ReadTimeoutError",
    "RecordSource",
    "SnapshotCursor",
    "SourceIterationError",
    "encode_message",
    "get_settings",
    "normalize",
    "register_mongodb_stream",
    "reload_settings",
]
