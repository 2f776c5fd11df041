import pytest

from conntest.custom_types import (
    TConnectionID,
)
from conntest.flow import (
    ConnectionRegistry,
    DuplicateConnectionError,
)


class FakeFlow:
    def __init__(self, name):
        self.name = name


def test_insert_and_lookup():
    registry = ConnectionRegistry()
    flow = FakeFlow("a")
    registry.insert(TConnectionID("a"), flow)
    assert registry.lookup(TConnectionID("a")) is flow
    assert registry.lookup(TConnectionID("b")) is None
    assert "a" in registry
    assert len(registry) == 1
    assert list(registry) == ["a"]


def test_duplicate_insert_is_rejected():
    registry = ConnectionRegistry()
    first = FakeFlow("first")
    registry.insert(TConnectionID("a"), first)
    with pytest.raises(DuplicateConnectionError):
        registry.insert(TConnectionID("a"), FakeFlow("second"))
    assert registry.lookup(TConnectionID("a")) is first


def test_remove():
    registry = ConnectionRegistry()
    flow = FakeFlow("a")
    registry.insert(TConnectionID("a"), flow)
    assert registry.remove(TConnectionID("a")) is flow
    assert registry.remove(TConnectionID("a")) is None
    assert registry.lookup(TConnectionID("a")) is None
    assert registry.flows() == []


def test_iteration_survives_removal():
    registry = ConnectionRegistry()
    for name in ("a", "b", "c"):
        registry.insert(TConnectionID(name), FakeFlow(name))
    for connection_id in registry:
        registry.remove(connection_id)
    assert len(registry) == 0
