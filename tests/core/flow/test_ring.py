import pytest

from conntest.flow import (
    Ring,
)


def test_ring_rejects_zero_capacity():
    with pytest.raises(ValueError):
        Ring(0)


def test_empty_ring_has_no_values():
    ring: Ring[int] = Ring(3)
    assert ring.get_latest() is None
    assert ring.get_previous(2) is None
    assert list(ring) == []


def test_lookback_after_wraparound():
    ring: Ring[int] = Ring(5)
    for value in range(1, 8):
        ring.insert(value)

    assert ring.get_latest() == 7
    assert ring.get_previous(0) == 7
    assert ring.get_previous(1) == 6
    assert ring.get_previous(4) == 3
    # 1 and 2 were overwritten by 6 and 7
    assert list(ring) == [7, 6, 5, 4, 3]


def test_get_previous_out_of_range():
    ring: Ring[str] = Ring(2)
    ring.insert("a").insert("b")
    assert ring.get_previous(-1) is None
    assert ring.get_previous(2) is None
    assert ring.get_previous(1) == "a"


def test_insert_mutates_in_place():
    ring: Ring[int] = Ring(2)
    alias = ring
    assert ring.insert(1) is ring
    assert alias.get_latest() == 1
    assert ring.cursor == 1
    ring.insert(2)
    assert ring.cursor == 0


def test_capacity_one_keeps_only_latest():
    ring: Ring[int] = Ring(1)
    ring.insert(1)
    ring.insert(2)
    assert ring.capacity == 1
    assert list(ring) == [2]
    assert ring.get_previous(1) is None
