"""
Record sources: the snapshot scan and the change stream tail.

Both wrap a PyMongo cursor behind the same pull interface:

    record, has_more = source.next(cancel)

`has_more` is False once the source will produce nothing further. A source
is opened lazily by the pump unless the connector opens it up front.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Tuple

from bson.errors import InvalidBSON
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from .errors import ConnectError, DecodeError, SourceIterationError
from .utils.logging import get_logger

logger = get_logger(__name__)

RawRecord = Mapping[str, Any]


class RecordSource(ABC):
    """Pull interface over a driver cursor."""

    name = "source"

    def __init__(self, collection: Collection):
        self.collection = collection
        self.collection_name = getattr(collection, "name", str(collection))
        self._opened = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def open(self) -> None:
        """
        Establish the underlying cursor. Calling it again is a no-op.

        Raises:
            ConnectError: If the driver rejects the cursor
        """
        if self._opened:
            return
        if self._closed:
            raise ConnectError(f"{self.name} for {self.collection_name} is closed")
        try:
            self._open()
        except PyMongoError as e:
            logger.error(
                f"Failed to open {self.name}: {e}",
                extra={"collection": self.collection_name, "source": self.name}
            )
            raise ConnectError(f"Failed to open {self.name} on {self.collection_name}: {e}") from e
        self._opened = True
        logger.info(
            f"Opened {self.name} for collection {self.collection_name}",
            extra={"collection": self.collection_name, "source": self.name}
        )

    def next(self, cancel: threading.Event) -> Tuple[Optional[RawRecord], bool]:
        """
        Pull the next raw record.

        Returns:
            (record, True) while records are flowing, (None, False) once the
            source is exhausted, closed or `cancel` is set

        Raises:
            SourceIterationError: Driver failure while fetching
            DecodeError: Record could not be decoded
        """
        if self._closed or cancel.is_set():
            return None, False
        if not self._opened:
            self.open()
        try:
            record = self._fetch(cancel)
        except InvalidBSON as e:
            raise DecodeError(f"Undecodable record in {self.name} on {self.collection_name}: {e}") from e
        except PyMongoError as e:
            if cancel.is_set():
                # Cursor torn down underneath us during shutdown
                return None, False
            raise SourceIterationError(f"{self.name} on {self.collection_name} failed: {e}") from e
        if record is None:
            return None, False
        if not isinstance(record, Mapping):
            raise DecodeError(
                f"{self.name} on {self.collection_name} produced {type(record).__name__}, expected a document"
            )
        return record, True

    def close(self) -> None:
        """Release the cursor. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if not self._opened:
            return
        try:
            self._close()
        except PyMongoError as e:
            logger.warning(
                f"Error closing {self.name}: {e}",
                extra={"collection": self.collection_name, "source": self.name}
            )

    def __enter__(self) -> "RecordSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def _open(self) -> None:
        ...

    @abstractmethod
    def _fetch(self, cancel: threading.Event) -> Optional[RawRecord]:
        """Return the next record, or None when nothing more will come."""
        ...

    @abstractmethod
    def _close(self) -> None:
        ...


class SnapshotCursor(RecordSource):
    """Unfiltered scan of every document currently in the collection."""

    name = "snapshot"

    def __init__(self, collection: Collection):
        super().__init__(collection)
        self._cursor = None
        self.documents_read = 0

    def _open(self) -> None:
        self._cursor = self.collection.find({})

    def _fetch(self, cancel: threading.Event) -> Optional[RawRecord]:
        try:
            document = next(self._cursor)
        except StopIteration:
            logger.info(
                f"Snapshot of {self.collection_name} complete",
                extra={"collection": self.collection_name, "documents": self.documents_read}
            )
            return None
        self.documents_read += 1
        return document

    def _close(self) -> None:
        self._cursor.close()


class ChangeTail(RecordSource):
    """
    Live change stream on the collection.

    Non-delete events carry the post-change document (updateLookup). Each
    poll blocks at most `max_await_time_ms`, after which `cancel` is checked
    again, so an idle stream never pins the pump thread.
    """

    name = "change_stream"

    def __init__(
        self,
        collection: Collection,
        max_await_time_ms: int = 1000,
        batch_size: int = 100,
        pipeline: Optional[List[Dict[str, Any]]] = None
    ):
        super().__init__(collection)
        self.max_await_time_ms = max_await_time_ms
        self.batch_size = batch_size
        self.pipeline = pipeline or []
        self._stream = None

    def _open(self) -> None:
        self._stream = self.collection.watch(
            pipeline=self.pipeline,
            full_document="updateLookup",
            batch_size=self.batch_size,
            max_await_time_ms=self.max_await_time_ms
        )

    def _fetch(self, cancel: threading.Event) -> Optional[RawRecord]:
        while not cancel.is_set():
            if not self._stream.alive:
                logger.info(
                    f"Change stream on {self.collection_name} is no longer alive",
                    extra={"collection": self.collection_name}
                )
                return None
            change = self._stream.try_next()
            if change is not None:
                return change
        return None

    def _close(self) -> None:
        self._stream.close()
