"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    BIDDING = "bidding"
    EDIT_PENDING = "edit_pending"
    SCHEDULED = "scheduled"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {
        RideStatus.BIDDING,
        RideStatus.EDIT_PENDING,
        RideStatus.SCHEDULED,
        RideStatus.CANCELLED,
    },
    RideStatus.BIDDING: {
        RideStatus.EDIT_PENDING,
        RideStatus.SCHEDULED,
        RideStatus.CANCELLED,
    },
    RideStatus.EDIT_PENDING: {RideStatus.BIDDING, RideStatus.CANCELLED},
    RideStatus.SCHEDULED: {RideStatus.PAYMENT_PENDING, RideStatus.CANCELLED},
    RideStatus.PAYMENT_PENDING: {RideStatus.PAID, RideStatus.CANCELLED},
    RideStatus.PAID: {RideStatus.EN_ROUTE, RideStatus.CANCELLED},
    RideStatus.EN_ROUTE: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.IN_PROGRESS},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

# Rides that drivers may still bid on.
OPEN_FOR_BIDDING = frozenset({RideStatus.REQUESTED, RideStatus.BIDDING})

# Rides that have not been matched with a driver yet.
UNMATCHED = frozenset(
    {RideStatus.REQUESTED, RideStatus.BIDDING, RideStatus.EDIT_PENDING}
)

# Cancelling from these statuses is subject to the cancellation-fee policy.
FEE_BEARING = frozenset(
    {RideStatus.SCHEDULED, RideStatus.PAID, RideStatus.EN_ROUTE}
)

# Driver-reported progress, in order.
DRIVER_PROGRESS = (
    RideStatus.PAID,
    RideStatus.EN_ROUTE,
    RideStatus.ARRIVED,
    RideStatus.IN_PROGRESS,
    RideStatus.COMPLETED,
)

TERMINAL = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


class BidStatus(str, enum.Enum):
    PENDING = "pending"
    SELECTED = "selected"
    ACCEPTED = "accepted"
    COUNTERED = "countered"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


OPEN_BID_STATUSES = frozenset(
    {BidStatus.PENDING, BidStatus.SELECTED, BidStatus.COUNTERED}
)


class CounterParty(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"


class VehicleType(str, enum.Enum):
    STANDARD = "standard"
    WHEELCHAIR = "wheelchair"
    STRETCHER = "stretcher"


class StairsTier(str, enum.Enum):
    NONE = "none"
    FEW = "1-3"
    SEVERAL = "4-10"
    MANY = "11+"
    FULL_FLIGHT = "full_flight"


class DiscountType(str, enum.Enum):
    FIXED_AMOUNT = "fixed_amount"
    PERCENTAGE = "percentage"
    SET_PRICE = "set_price"


class UserRole(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
    ADMIN = "admin"


class CancellationTier(str, enum.Enum):
    FREE = "free"
    PARTIAL = "partial"
    FULL = "full"
