"""
Ingestion pump: drains record sources on a background thread.

Sources are consumed strictly in order. Every record is normalized and pushed
onto the delivery channel, so channel order is source order: snapshot
documents in cursor order, then change events in commit order.
"""

import threading
import time
from typing import Optional, Sequence

from .channel import DeliveryChannel
from .errors import CDCError, SourceIterationError
from .metrics import errors_total, events_total, pump_running
from .normalizer import CanonicalEvent, normalize
from .sources import RecordSource
from .utils.logging import ConnectorLogContext, get_logger

logger = get_logger(__name__)


class IngestionPump:
    """
    Background producer feeding a DeliveryChannel.

    Any iteration or decode error stops the pump: the error is kept on
    `error` and handed to the channel, so the reader sees it after the events
    already delivered. Exhausting every source finishes the channel.
    Cancellation exits quietly.

    Thread Safety: start/stop/join may be called from any thread; the pump
    itself runs on exactly one thread.

    Example:
        >>> pump = IngestionPump([SnapshotCursor(coll), ChangeTail(coll)],
        ...                      channel, "db", "users", threading.Event())
        >>> pump.start()
    """

    def __init__(
        self,
        sources: Sequence[RecordSource],
        channel: DeliveryChannel,
        database: str,
        collection: str,
        cancel: threading.Event,
        connector_id: Optional[str] = None
    ):
        if not sources:
            raise ValueError("at least one source is required")
        self.sources = list(sources)
        self.channel = channel
        self.database = database
        self.collection = collection
        self.cancel = cancel
        self.connector_id = connector_id

        self.error: Optional[BaseException] = None
        self.records_pushed: int = 0
        self._thread: Optional[threading.Thread] = None
        self._started = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the pump thread. A pump runs at most once."""
        with self._lock:
            if self._started:
                raise RuntimeError("pump already started")
            self._started = True
            self._thread = threading.Thread(
                target=self._run,
                name=f"mongostream-pump-{self.collection}",
                daemon=True
            )
            self._thread.start()

    def stop(self) -> None:
        self.cancel.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the thread to exit. Returns True if it has."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        with ConnectorLogContext(self.connector_id):
            self._running_gauge().set(1)
            started = time.time()
            logger.info(
                f"Ingestion pump started for {self.database}.{self.collection}",
                extra={
                    "collection": self.collection,
                    "sources": [source.name for source in self.sources]
                }
            )
            completed = False
            try:
                completed = self._drain_all()
                if completed:
                    logger.info(
                        f"All sources exhausted for {self.collection}",
                        extra={"collection": self.collection, "records": self.records_pushed}
                    )
                    self.channel.finish()
            except CDCError as e:
                self._fail(e)
            except Exception as e:
                self._fail(SourceIterationError(f"Unexpected pump error: {e}"), cause=e)
            finally:
                for source in self.sources:
                    source.close()
                if not completed and self.error is None:
                    # Cancelled: release any reader still waiting on the channel
                    self.channel.finish()
                self._running_gauge().set(0)
                logger.info(
                    f"Ingestion pump stopped for {self.collection}",
                    extra={
                        "collection": self.collection,
                        "records": self.records_pushed,
                        "duration_seconds": time.time() - started,
                        "cancelled": self.cancel.is_set()
                    }
                )

    def _running_gauge(self):
        return pump_running.labels(collection=self.collection, connector_id=self.connector_id or "")

    def _drain_all(self) -> bool:
        """Drain each source in turn. Returns False if cancelled."""
        for source in self.sources:
            if not self._drain(source):
                return False
            source.close()
        return not self.cancel.is_set()

    def _drain(self, source: RecordSource) -> bool:
        source.open()
        while True:
            raw, has_more = source.next(self.cancel)
            if not has_more:
                return not self.cancel.is_set()
            event = normalize(raw, self.database, self.collection)
            if not self._push(event):
                return False

    def _push(self, event: CanonicalEvent) -> bool:
        if not self.channel.put(event):
            # Channel ended underneath us: connector closed
            return False
        self.records_pushed += 1
        events_total.labels(collection=self.collection, action=str(event.action)).inc()
        return True

    def _fail(self, error: BaseException, cause: Optional[BaseException] = None) -> None:
        if cause is not None:
            error.__cause__ = cause
        if self.cancel.is_set():
            logger.info(
                f"Pump error after cancellation ignored: {error}",
                extra={"collection": self.collection}
            )
            return
        self.error = error
        errors_total.labels(collection=self.collection, error_type=type(error).__name__).inc()
        logger.error(
            f"Ingestion pump failed for {self.collection}: {error}",
            extra={
                "collection": self.collection,
                "error_type": type(error).__name__,
                "records": self.records_pushed
            },
            exc_info=error
        )
        self.channel.fail(error)
