"""Unit tests for MongoStreamInput."""

import json
import threading
import time

import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from fakes import FakeChangeStream, FakeCollection
from mongostream.config import MongoStreamConfig, MongoStreamSettings
from mongostream.connector import ConnectorState, MongoStreamInput
from mongostream.errors import (
    ConnectError, ConnectorStateError, EndOfInput, ReadTimeoutError, SourceIterationError
)
from mongostream.normalizer import CanonicalEvent, normalize


def make_config(**overrides):
    data = {
        "uri": "mongodb://localhost:27017",
        "database": "db",
        "collection": "users",
        "stream_snapshot": False,
        "max_await_time_ms": 50,
        "shutdown_timeout": 2.0
    }
    data.update(overrides)
    return MongoStreamConfig(**data)


class TestMongoStreamInput:
    """Test MongoStreamInput."""

    def test_init_validates_config(self):
        with pytest.raises(TypeError, match="config must be a MongoStreamConfig"):
            MongoStreamInput({"uri": "mongodb://x"})

    def test_initial_state(self):
        connector = MongoStreamInput(make_config())

        assert connector.state == ConnectorState.CREATED
        assert not connector.is_connected
        assert connector.pump is None

    def test_read_before_connect(self):
        connector = MongoStreamInput(make_config())

        with pytest.raises(ConnectorStateError, match="before connect"):
            connector.read()

    def test_connect_uses_configured_client(self, fake_collection, client_factory):
        factory, client = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(server_selection_timeout_ms=1234), client_factory=factory)

        connector.connect()
        try:
            assert connector.is_connected
            assert client.uri == "mongodb://localhost:27017"
            assert client.kwargs == {"serverSelectionTimeoutMS": 1234}
            assert client.admin.commands == ["ping"]
            assert client.databases == ["db"]
        finally:
            connector.close()

    def test_connect_twice_rejected(self, fake_collection, client_factory):
        factory, _ = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        try:
            with pytest.raises(ConnectorStateError):
                connector.connect()
        finally:
            connector.close()

    def test_connect_after_close_rejected(self, fake_collection, client_factory):
        factory, _ = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.close()

        with pytest.raises(ConnectorStateError):
            connector.connect()

    def test_ping_failure_is_connect_error(self, fake_collection, client_factory):
        factory, client = client_factory(fake_collection, ping_error=ServerSelectionTimeoutError("no servers"))
        connector = MongoStreamInput(make_config(), client_factory=factory)

        with pytest.raises(ConnectError, match="no servers"):
            connector.connect()

        assert client.close_calls == 1
        assert connector.state == ConnectorState.CREATED
        assert connector.pump is None

    def test_unreachable_server_is_connect_error(self):
        connector = MongoStreamInput(make_config(
            uri="mongodb://127.0.0.1:1/?directConnection=true",
            server_selection_timeout_ms=200
        ))

        with pytest.raises(ConnectError):
            connector.connect()
        assert connector.state == ConnectorState.CREATED

    def test_ping_skipped_when_verification_disabled(self, fake_collection, client_factory):
        factory, client = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(verify_connection=False), client_factory=factory)

        connector.connect()
        connector.close()

        assert client.admin.commands == []

    def test_tail_only_watch_failure_surfaces_at_connect(self, client_factory):
        collection = FakeCollection(watch_error=OperationFailure("The $changeStream stage is only supported on replica sets"))
        factory, client = client_factory(collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)

        with pytest.raises(ConnectError, match="replica sets"):
            connector.connect()

        assert client.close_calls == 1

    def test_tail_only_skips_existing_documents(self, client_factory):
        change = {"operationType": "insert", "fullDocument": {"_id": 9}}
        collection = FakeCollection(
            documents=[{"_id": 1}, {"_id": 2}],
            stream=FakeChangeStream([change])
        )
        factory, _ = client_factory(collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        try:
            assert connector.read(timeout=2) == normalize(change, "db", "users")
            with pytest.raises(ReadTimeoutError):
                connector.read(timeout=0.1)
        finally:
            connector.close()

        assert "find" not in collection.calls

    def test_snapshot_then_tail_delivers_in_order(self, client_factory):
        documents = [{"_id": 1, "x": 1}, {"_id": 2, "x": 2}]
        changes = [
            {"operationType": "update", "fullDocument": {"_id": 1, "x": 10}},
            {"operationType": "replace", "fullDocument": {"_id": 2, "y": 1}},
            {"operationType": "delete", "documentKey": {"_id": 1}}
        ]
        collection = FakeCollection(documents=documents, stream=FakeChangeStream(changes))
        factory, _ = client_factory(collection)
        connector = MongoStreamInput(make_config(stream_snapshot=True), client_factory=factory)
        connector.connect()
        try:
            events = [connector.read(timeout=2) for _ in range(5)]
        finally:
            connector.close()

        assert events == [normalize(r, "db", "users") for r in documents + changes]
        assert [e.action for e in events] == ["insert", "insert", "update", "replace", "delete"]
        assert collection.calls.index("watch") > collection.calls.index("snapshot_exhausted")

    def test_open_tail_before_snapshot(self, client_factory):
        collection = FakeCollection(documents=[{"_id": 1}], stream=FakeChangeStream())
        factory, _ = client_factory(collection)
        connector = MongoStreamInput(
            make_config(stream_snapshot=True, open_tail_before_snapshot=True),
            client_factory=factory
        )
        connector.connect()
        try:
            event = connector.read(timeout=2)
        finally:
            connector.close()

        assert event.payload == {"_id": 1}
        assert collection.calls[:2] == ["watch", "find"]

    def test_end_of_stream(self, client_factory):
        collection = FakeCollection(stream=FakeChangeStream(
            [{"operationType": "invalidate"}],
            end_when_drained=True
        ))
        factory, _ = client_factory(collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        try:
            assert connector.read(timeout=2).action == "invalidate"
            with pytest.raises(EndOfInput):
                connector.read(timeout=2)
        finally:
            connector.close()

    def test_iteration_error_surfaces_on_read(self, client_factory):
        stream = FakeChangeStream(error=OperationFailure("cursor not found"))
        factory, _ = client_factory(FakeCollection(stream=stream))
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        try:
            with pytest.raises(SourceIterationError, match="cursor not found"):
                connector.read(timeout=2)
            with pytest.raises(SourceIterationError):
                connector.read(timeout=2)
        finally:
            connector.close()

    def test_pump_stop_releases_read(self, fake_collection, client_factory):
        factory, _ = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        try:
            connector.pump.stop()
            assert connector.pump.join(timeout=2)
            with pytest.raises(EndOfInput):
                connector.read(timeout=1)
        finally:
            connector.close()

    def test_close_releases_blocked_read(self, fake_collection, client_factory):
        factory, _ = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        outcome = []

        def reader():
            try:
                connector.read()
            except EndOfInput as e:
                outcome.append(e)

        thread = threading.Thread(target=reader)
        thread.start()
        time.sleep(0.1)
        connector.close()
        thread.join(timeout=2)

        assert not thread.is_alive()
        assert len(outcome) == 1

    def test_read_after_close(self, fake_collection, client_factory):
        factory, _ = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        connector.close()

        with pytest.raises(EndOfInput):
            connector.read()

    def test_close_is_idempotent(self, fake_collection, fake_stream, client_factory):
        factory, client = client_factory(fake_collection)
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()

        connector.close()
        connector.close()

        assert connector.state == ConnectorState.CLOSED
        assert client.close_calls == 1
        assert fake_stream.closed
        assert not connector.pump.is_running

    def test_read_message(self, client_factory):
        stream = FakeChangeStream([{"operationType": "update", "fullDocument": {"_id": 1, "x": 2}}])
        factory, _ = client_factory(FakeCollection(stream=stream))
        connector = MongoStreamInput(make_config(), client_factory=factory)
        connector.connect()
        try:
            message, ack = connector.read_message(timeout=2)
        finally:
            connector.close()

        assert json.loads(message.body) == {"_id": 1, "x": 2}
        assert message.metadata["event"] == "update"
        assert message.metadata["collection"] == "users"
        assert message.metadata["database"] == "db"
        assert ack(None) is None

    def test_context_manager(self, fake_collection, client_factory):
        factory, client = client_factory(fake_collection)

        with MongoStreamInput(make_config(), client_factory=factory) as connector:
            assert connector.is_connected

        assert connector.state == ConnectorState.CLOSED
        assert client.close_calls == 1

    def test_from_settings(self):
        settings = MongoStreamSettings(uri="mongodb://db:27017", database="shop", collection="orders")

        connector = MongoStreamInput.from_settings(settings, stream_snapshot=True)

        assert connector.config.uri == "mongodb://db:27017"
        assert connector.config.collection == "orders"
        assert connector.config.stream_snapshot is True
