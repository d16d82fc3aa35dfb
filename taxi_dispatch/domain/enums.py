"""Domain enumerations and state-transition rules."""

import enum


class UserRole(str, enum.Enum):
    CLIENT = "client"
    DRIVER = "driver"
    ADMIN = "admin"


class OrderType(str, enum.Enum):
    TAXI = "taxi"
    CARGO = "cargo"
    COURIER = "courier"
    TOWING = "towing"


class OrderStatus(str, enum.Enum):
    NEW = "new"
    BIDDING = "bidding"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchingPolicy(str, enum.Enum):
    FIXED = "fixed"
    BIDDING = "bidding"


# State machine: maps current status -> set of valid next statuses.
# A client rejecting a bid sends BIDDING straight back to NEW.
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.NEW: {
        OrderStatus.BIDDING,
        OrderStatus.ACCEPTED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.BIDDING: {
        OrderStatus.ACCEPTED,
        OrderStatus.NEW,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ACCEPTED: {
        OrderStatus.ARRIVED,
        OrderStatus.IN_PROGRESS,
        OrderStatus.COMPLETED,
        OrderStatus.NEW,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ARRIVED: {
        OrderStatus.IN_PROGRESS,
        OrderStatus.COMPLETED,
        OrderStatus.NEW,
        OrderStatus.CANCELLED,
    },
    OrderStatus.IN_PROGRESS: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

# Orders visible to drivers polling for work
ACTIVE_STATUSES = frozenset({OrderStatus.NEW, OrderStatus.BIDDING})

# Orders a driver is currently working on
ONGOING_STATUSES = frozenset(
    {OrderStatus.ACCEPTED, OrderStatus.ARRIVED, OrderStatus.IN_PROGRESS}
)


def sources_of(target: OrderStatus) -> set[OrderStatus]:
    """Every status from which *target* is reachable in one step."""
    return {
        status
        for status, allowed in ORDER_TRANSITIONS.items()
        if target in allowed
    }


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, set())
