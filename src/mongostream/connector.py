"""
MongoDB stream input.

Pull-based façade over the ingestion pump:

    connector = MongoStreamInput(MongoStreamConfig(uri=..., database=..., collection=...))
    connector.connect()
    event = connector.read()      # blocks until an event, EndOfInput or an error
    connector.close()

With `stream_snapshot` the collection's existing documents are delivered as
inserts first, then live changes. Without it only live changes are
delivered; writes made before the change stream opens are not seen.
"""

import threading
import uuid
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import pymongo
from pymongo.errors import PyMongoError

from .channel import DeliveryChannel
from .config import MongoStreamConfig, MongoStreamSettings, get_settings
from .errors import ConnectError, ConnectorStateError, EndOfInput
from .normalizer import AckFunc, CanonicalEvent, Message, auto_ack, encode_message
from .pump import IngestionPump
from .sources import ChangeTail, RecordSource, SnapshotCursor
from .utils.logging import get_logger, set_log_level

logger = get_logger(__name__)

ClientFactory = Callable[..., Any]


class ConnectorState(str, Enum):
    """Connector lifecycle. `closed` is terminal."""
    CREATED = "created"
    CONNECTED = "connected"
    CLOSED = "closed"


class MongoStreamInput:
    """
    Snapshot-then-tail / tail-only CDC input for one collection.

    Thread Safety: `read` is meant for one caller at a time; `close` may be
    called from any thread, including while a `read` is blocked.
    """

    def __init__(
        self,
        config: MongoStreamConfig,
        client_factory: Optional[ClientFactory] = None
    ):
        """
        Args:
            config: Validated connector configuration
            client_factory: Builds the MongoClient; defaults to
                pymongo.MongoClient, looked up at connect time so tests can
                monkeypatch it

        Raises:
            TypeError: If config is not a MongoStreamConfig
        """
        if not isinstance(config, MongoStreamConfig):
            raise TypeError("config must be a MongoStreamConfig instance")

        self.config = config
        self.connector_id = str(uuid.uuid4())
        self._client_factory = client_factory

        self._state = ConnectorState.CREATED
        self._state_lock = threading.Lock()
        self._client = None
        self._cancel = threading.Event()
        self._channel: DeliveryChannel[CanonicalEvent] = DeliveryChannel(config.channel_capacity)
        self._pump: Optional[IngestionPump] = None

        logger.info(
            f"Initialized MongoStreamInput for {config.database}.{config.collection}",
            extra={
                "connector_id": self.connector_id,
                "collection": config.collection,
                "stream_snapshot": config.stream_snapshot
            }
        )

    @classmethod
    def from_settings(
        cls,
        settings: Optional[MongoStreamSettings] = None,
        **overrides
    ) -> "MongoStreamInput":
        """Build a connector from environment settings."""
        settings = settings or get_settings()
        set_log_level(settings.log_level)
        return cls(settings.to_config(**overrides))

    @property
    def state(self) -> ConnectorState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectorState.CONNECTED

    @property
    def pump(self) -> Optional[IngestionPump]:
        return self._pump

    def connect(self) -> None:
        """
        Connect to MongoDB and start the ingestion pump.

        Raises:
            ConnectorStateError: If already connected or closed
            ConnectError: If the client, ping or cursor setup fails
        """
        with self._state_lock:
            if self._state != ConnectorState.CREATED:
                raise ConnectorStateError(f"connect() not allowed in state {self._state.value}")

            try:
                factory = self._client_factory or pymongo.MongoClient
                self._client = factory(
                    self.config.uri,
                    serverSelectionTimeoutMS=self.config.server_selection_timeout_ms
                )
                if self.config.verify_connection:
                    self._client.admin.command("ping")

                collection = self._client[self.config.database][self.config.collection]
                sources = self._build_sources(collection)
            except (PyMongoError, ConnectError) as e:
                self._release_client()
                logger.error(
                    f"Failed to connect to MongoDB: {e}",
                    extra={"connector_id": self.connector_id, "collection": self.config.collection}
                )
                if isinstance(e, ConnectError):
                    raise
                raise ConnectError(f"MongoDB connection failed: {e}") from e

            self._pump = IngestionPump(
                sources,
                self._channel,
                database=self.config.database,
                collection=self.config.collection,
                cancel=self._cancel,
                connector_id=self.connector_id
            )
            self._pump.start()
            self._state = ConnectorState.CONNECTED

        logger.info(
            f"Connected to {self.config.database}.{self.config.collection}",
            extra={
                "connector_id": self.connector_id,
                "collection": self.config.collection,
                "mode": "snapshot_then_tail" if self.config.stream_snapshot else "tail_only"
            }
        )

    def _build_sources(self, collection) -> List[RecordSource]:
        """
        Pick the sources for the configured mode.

        Tail-only opens the change stream here so setup errors reach the
        caller. Snapshot-then-tail opens it after the scan unless
        `open_tail_before_snapshot` is set.
        """
        tail = ChangeTail(
            collection,
            max_await_time_ms=self.config.max_await_time_ms,
            batch_size=self.config.batch_size
        )
        if not self.config.stream_snapshot:
            tail.open()
            return [tail]

        snapshot = SnapshotCursor(collection)
        try:
            if self.config.open_tail_before_snapshot:
                tail.open()
            snapshot.open()
        except ConnectError:
            tail.close()
            snapshot.close()
            raise
        return [snapshot, tail]

    def read(self, timeout: Optional[float] = None) -> CanonicalEvent:
        """
        Block until the next event.

        Raises:
            ConnectorStateError: If connect() was never called
            EndOfInput: Connector closed, or the change stream ended
            ReadTimeoutError: Nothing arrived within `timeout` seconds
            SourceIterationError: The pump failed
        """
        if self._state == ConnectorState.CREATED:
            raise ConnectorStateError("read() called before connect()")
        if self._state == ConnectorState.CLOSED:
            raise EndOfInput("connector closed")
        return self._channel.get(timeout)

    def read_message(self, timeout: Optional[float] = None) -> Tuple[Message, AckFunc]:
        """Read one event as a host message with its (no-op) acknowledgement."""
        event = self.read(timeout)
        return encode_message(event), auto_ack

    def close(self) -> None:
        """Stop the pump and release the client. Safe to call repeatedly."""
        with self._state_lock:
            if self._state == ConnectorState.CLOSED:
                return
            previous = self._state
            self._state = ConnectorState.CLOSED

        self._cancel.set()
        self._channel.close()

        if self._pump is not None and not self._pump.join(self.config.shutdown_timeout):
            logger.warning(
                f"Ingestion pump did not stop within {self.config.shutdown_timeout}s",
                extra={"connector_id": self.connector_id, "collection": self.config.collection}
            )

        self._release_client()
        logger.info(
            f"Closed MongoStreamInput for {self.config.database}.{self.config.collection}",
            extra={
                "connector_id": self.connector_id,
                "collection": self.config.collection,
                "previous_state": previous.value
            }
        )

    def _release_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.close()
        except PyMongoError as e:
            logger.warning(
                f"Error closing MongoDB client: {e}",
                extra={"connector_id": self.connector_id}
            )

    def __enter__(self) -> "MongoStreamInput":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
