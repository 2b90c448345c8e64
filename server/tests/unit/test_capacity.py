"""Unit tests for the capacity state value."""

import pytest

from availability_engine.core.exceptions import CapacityInvariantError
from availability_engine.scheduling.capacity import CapacityState, InsufficientCapacity, validate_guests


def test_reserve_takes_spots():
    state = CapacityState(capacity=4).reserve(3)
    assert (state.booked, state.available) == (3, 1)


def test_reserve_exactly_remaining():
    state = CapacityState(capacity=4, booked=2).reserve(2)
    assert state.available == 0


def test_reserve_beyond_remaining_is_rejected_whole():
    state = CapacityState(capacity=4, booked=3)
    with pytest.raises(InsufficientCapacity) as exc_info:
        state.reserve(2)
    assert exc_info.value.available == 1
    assert exc_info.value.requested == 2
    assert state.booked == 3


def test_release_clamps_at_zero():
    state = CapacityState(capacity=4, booked=1).release(3)
    assert (state.booked, state.available) == (0, 4)


@pytest.mark.parametrize("guests", [0, -1, True, 1.5, "2"])
def test_guests_must_be_positive_integers(guests):
    with pytest.raises(ValueError):
        validate_guests(guests)


def test_from_counters_rejects_drift():
    with pytest.raises(CapacityInvariantError):
        CapacityState.from_counters(capacity=4, booked=1, available=2)


@pytest.mark.parametrize("capacity, booked", [(0, 0), (4, 5), (4, -1)])
def test_invalid_states_cannot_be_built(capacity, booked):
    with pytest.raises(CapacityInvariantError):
        CapacityState(capacity=capacity, booked=booked)
