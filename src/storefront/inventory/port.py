"""Stock ledger port: per-product stock counters and reservation records.

Products expose ``on_hand`` and ``reserved`` as separate counters so that a
reservation (temporary hold) and a permanent deduction (item left the
warehouse) stay distinguishable. Counter updates go through
``compare_and_set`` (one row) or ``compare_and_set_many`` (several rows in one
atomic step); adapters must make both atomic (a lock in memory, a transaction
of ``UPDATE ... WHERE version = :expected`` statements in SQL).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class ReservationStatus(Enum):
    ACTIVE = "Active"
    CONFIRMED = "Confirmed"
    RELEASED = "Released"
    COMMITTED = "Committed"


# Reservations in these states still hold stock
HOLDING_STATUSES = frozenset({ReservationStatus.ACTIVE, ReservationStatus.CONFIRMED})


@dataclass(frozen=True)
class StockLevels:
    """Stock counters of one product row, with the row version they were read at."""

    product_ref: str
    on_hand: int
    reserved: int
    version: int = 0

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved

    def with_reserved(self, delta: int) -> "StockLevels":
        return replace(self, reserved=self.reserved + delta)

    def with_deduction(self, quantity: int) -> "StockLevels":
        """Reserved stock leaves the warehouse: both counters drop together."""
        return replace(self, on_hand=self.on_hand - quantity, reserved=self.reserved - quantity)


@dataclass(frozen=True)
class StockReservation:
    product_ref: str
    quantity: int
    order_ref: str
    expires_at: datetime


@dataclass(frozen=True)
class ReservationSet:
    """All reservations held for one order, one per distinct product."""

    order_ref: str
    reservations: tuple[StockReservation, ...]
    expires_at: datetime
    status: ReservationStatus = ReservationStatus.ACTIVE

    def quantity_for(self, product_ref: str) -> int:
        return sum(r.quantity for r in self.reservations if r.product_ref == product_ref)

    def is_holding(self) -> bool:
        return self.status in HOLDING_STATUSES


class StockLedger(ABC):
    """Abstract stock store."""

    @abstractmethod
    def levels(self, product_ref: str) -> StockLevels:
        """Read the current counters, or raise ObjectNotFoundError."""
        ...

    @abstractmethod
    def compare_and_set(self, expected: StockLevels, updated: StockLevels) -> bool:
        """Write ``updated`` only if the row is still at ``expected.version``."""
        ...

    @abstractmethod
    def compare_and_set_many(self, expected: list[StockLevels], updated: list[StockLevels]) -> bool:
        """Write every row in ``updated`` only if every row in ``expected`` is
        still at its version. Either all rows are written or none are.
        """
        ...

    @abstractmethod
    def record_reservations(self, reservation_set: ReservationSet) -> None:
        """Store a freshly granted reservation set."""
        ...

    @abstractmethod
    def reservations_for(self, order_ref: str) -> ReservationSet | None:
        ...

    @abstractmethod
    def transition_reservations(
        self,
        order_ref: str,
        from_statuses: frozenset,
        to_status: ReservationStatus,
    ) -> ReservationSet | None:
        """Atomically move an order's set to ``to_status``.

        Returns the set as it was before the move, or None when the set is
        missing or not in one of ``from_statuses``. Exactly one concurrent
        caller wins a given move.
        """
        ...

    @abstractmethod
    def expired_reservations(self, as_of: datetime) -> list[ReservationSet]:
        """Active (unpaid) reservation sets whose expiry has passed."""
        ...
