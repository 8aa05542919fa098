from collections import namedtuple
from datetime import UTC, datetime, timedelta

from protean import current_domain

from storefront.cart.owner import Owner
from storefront.inventory.port import ReservationStatus
from storefront.order.expiry import EXPIRY_REASON, expire_unpaid_orders
from storefront.order.lifecycle import ConfirmPayment, ExpireOrder
from storefront.order.order import Actor, Order, OrderStatus

NOW = datetime(2025, 6, 1, 9, 30, tzinfo=UTC)
ACCOUNT = Owner.account("acct-001")
Line = namedtuple("Line", "product_ref quantity")


def _place(add_line, checkout, payment_type="bank", owner=ACCOUNT):
    add_line(owner, "prod-widget", 2)
    return checkout(owner, as_of=NOW, payment_type=payment_type).order


def _stored(order):
    return current_domain.repository_for(Order).get(order.id)


def _pay(order):
    current_domain.process(ConfirmPayment(order_id=order.id), asynchronous=False)


class TestExpireUnpaidOrders:
    def test_nothing_to_expire_before_the_deadline(self, add_line, checkout):
        order = _place(add_line, checkout)

        assert expire_unpaid_orders(as_of=NOW + timedelta(minutes=29)) == 0
        assert _stored(order).status == OrderStatus.PENDING.value

    def test_cancels_unpaid_order_after_ttl(self, engine, catalogue, add_line, checkout):
        order = _place(add_line, checkout)

        cancelled = expire_unpaid_orders(as_of=NOW + timedelta(minutes=31))

        assert cancelled == 1
        stored = _stored(order)
        assert stored.status == OrderStatus.CANCELLED.value
        assert stored.cancelled_by == Actor.SYSTEM.value
        assert stored.cancellation_reason == EXPIRY_REASON
        assert catalogue.levels("prod-widget").reserved == 0
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.RELEASED

    def test_second_run_cancels_nothing(self, add_line, checkout):
        _place(add_line, checkout)
        as_of = NOW + timedelta(minutes=31)

        assert expire_unpaid_orders(as_of=as_of) == 1
        assert expire_unpaid_orders(as_of=as_of) == 0

    def test_paid_orders_are_kept(self, catalogue, add_line, checkout):
        order = _place(add_line, checkout)
        _pay(order)

        assert expire_unpaid_orders(as_of=NOW + timedelta(hours=2)) == 0
        assert _stored(order).status == OrderStatus.PAID.value
        assert catalogue.levels("prod-widget").reserved == 2

    def test_payment_arriving_during_the_sweep_wins(self, engine, catalogue, add_line, checkout, monkeypatch):
        order = _place(add_line, checkout)
        list_expired = engine.coordinator.expired

        def expired_then_paid(as_of=None):
            candidates = list_expired(as_of)
            _pay(order)
            return candidates

        monkeypatch.setattr(engine.coordinator, "expired", expired_then_paid)

        assert expire_unpaid_orders(as_of=NOW + timedelta(hours=2)) == 0
        assert _stored(order).status == OrderStatus.PAID.value
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.CONFIRMED
        assert catalogue.levels("prod-widget").reserved == 2

    def test_order_not_yet_due_is_not_expired(self, engine, add_line, checkout):
        order = _place(add_line, checkout)

        expired = current_domain.process(
            ExpireOrder(order_id=order.id, as_of=NOW + timedelta(minutes=5)),
            asynchronous=False,
        )

        assert expired is False
        assert _stored(order).status == OrderStatus.PENDING.value
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.ACTIVE

    def test_cash_on_delivery_orders_are_kept(self, add_line, checkout):
        order = _place(add_line, checkout, payment_type="cod")

        assert expire_unpaid_orders(as_of=NOW + timedelta(days=1)) == 0
        assert _stored(order).status == OrderStatus.PENDING.value

    def test_naive_timestamps_are_utc(self, add_line, checkout):
        _place(add_line, checkout)
        assert expire_unpaid_orders(as_of=datetime(2025, 6, 1, 10, 1)) == 1

    def test_orphaned_reservations_are_released(self, engine, catalogue):
        engine.coordinator.reserve("order-orphan", [Line("prod-gadget", 2)], NOW)

        assert expire_unpaid_orders(as_of=NOW + timedelta(minutes=1)) == 0
        assert catalogue.levels("prod-gadget").reserved == 0
