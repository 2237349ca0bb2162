"""Shared fixtures for connector tests."""

from typing import Optional

import pytest

from fakes import FakeChangeStream, FakeClient, FakeCollection


@pytest.fixture
def fake_stream():
    return FakeChangeStream()


@pytest.fixture
def fake_collection(fake_stream):
    return FakeCollection(name="users", stream=fake_stream)


@pytest.fixture
def client_factory():
    """Return a builder: make(collection, ping_error=None) -> (factory, client)."""
    def make(collection: FakeCollection, ping_error: Optional[Exception] = None):
        client = FakeClient(collection, ping_error=ping_error)

        def factory(uri, **kwargs):
            client.uri = uri
            client.kwargs = kwargs
            return client

        return factory, client

    return make
