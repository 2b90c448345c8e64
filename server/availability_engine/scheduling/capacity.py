"""Capacity accounting for a single slot.

``CapacityState`` is an immutable value holding ``capacity`` and ``booked``;
``available`` is always derived, so ``available == capacity - booked`` cannot
drift. Every constructor validates ``0 <= booked <= capacity``.
"""

from dataclasses import dataclass

from ..core.exceptions import CapacityInvariantError


class InsufficientCapacity(ValueError):
    """Raised when a reservation asks for more guests than are available."""

    def __init__(self, requested: int, available: int):
        super().__init__(f"requested {requested} guests but only {available} available")
        self.requested = requested
        self.available = available


def validate_guests(guests: int) -> int:
    if isinstance(guests, bool) or not isinstance(guests, int) or guests < 1:
        raise ValueError("guests must be a positive integer")
    return guests


@dataclass(frozen=True)
class CapacityState:
    capacity: int
    booked: int = 0

    def __post_init__(self) -> None:
        if self.capacity < 1 or not 0 <= self.booked <= self.capacity:
            raise CapacityInvariantError(self.capacity, self.booked, self.capacity - self.booked)

    @property
    def available(self) -> int:
        return self.capacity - self.booked

    @classmethod
    def from_counters(cls, capacity: int, booked: int, available: int) -> "CapacityState":
        """Rebuild state from stored counters, rejecting rows that disagree."""
        if available != capacity - booked:
            raise CapacityInvariantError(capacity, booked, available)
        return cls(capacity=capacity, booked=booked)

    def reserve(self, guests: int) -> "CapacityState":
        """Take ``guests`` spots; all or nothing."""
        validate_guests(guests)
        if guests > self.available:
            raise InsufficientCapacity(guests, self.available)
        return CapacityState(self.capacity, self.booked + guests)

    def release(self, guests: int) -> "CapacityState":
        """Give back up to ``guests`` spots, clamped at zero booked."""
        validate_guests(guests)
        return CapacityState(self.capacity, max(0, self.booked - guests))
