from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.cart.owner import Owner
from storefront.exceptions import InvalidTransition
from storefront.inventory.port import ReservationStatus
from storefront.order.lifecycle import (
    CancelOrder,
    ConfirmPayment,
    DeliverOrder,
    ShipOrder,
    StartProcessing,
    UpdateOrder,
)
from storefront.order.order import Actor, Order, OrderStatus
from storefront.order.queries import get_order, list_orders

NOW = datetime(2025, 6, 1, 9, 30, tzinfo=UTC)
ACCOUNT = Owner.account("acct-001")
GUEST = Owner.guest("sess-002")


@pytest.fixture()
def place(add_line, checkout):
    def _place(owner=ACCOUNT, product_ref="prod-widget", quantity=2, as_of=NOW, **overrides):
        add_line(owner, product_ref, quantity)
        overrides.setdefault("payment_type", "bank")
        return checkout(owner, as_of=as_of, **overrides).order

    return _place


def _process(command):
    return current_domain.process(command, asynchronous=False)


def _stored(order):
    return current_domain.repository_for(Order).get(order.id)


def _ship(order):
    _process(ConfirmPayment(order_id=order.id))
    _process(StartProcessing(order_id=order.id))
    return _process(ShipOrder(order_id=order.id))


class TestFulfilment:
    def test_payment_confirms_reservations(self, engine, place):
        order = place()

        paid = _process(ConfirmPayment(order_id=order.id, amount=1_130_000, reference="VCB-778899"))

        assert paid.status == OrderStatus.PAID.value
        assert _stored(order).payment.reference == "VCB-778899"
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.CONFIRMED

    def test_delivery_deducts_stock(self, engine, catalogue, place):
        before = catalogue.levels("prod-widget")
        order = place()

        _process(ConfirmPayment(order_id=order.id))
        _process(StartProcessing(order_id=order.id))
        _process(ShipOrder(order_id=order.id, shipping_method="GHN Express"))
        delivered = _process(DeliverOrder(order_id=order.id))

        assert delivered.status == OrderStatus.DELIVERED.value
        assert _stored(order).shipping_method == "GHN Express"
        after = catalogue.levels("prod-widget")
        assert after.on_hand == before.on_hand - 2
        assert after.reserved == before.reserved
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.COMMITTED

    def test_payment_amount_mismatch_is_rejected(self, engine, place):
        order = place()

        with pytest.raises(ValidationError):
            _process(ConfirmPayment(order_id=order.id, amount=1))

        assert _stored(order).status == OrderStatus.PENDING.value
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.ACTIVE

    def test_paying_twice_is_rejected(self, engine, place):
        order = place()
        _process(ConfirmPayment(order_id=order.id))

        with pytest.raises(InvalidTransition):
            _process(ConfirmPayment(order_id=order.id))
        assert _stored(order).status == OrderStatus.PAID.value

    def test_unknown_order(self, engine):
        with pytest.raises(ObjectNotFoundError):
            _process(StartProcessing(order_id="no-such-order"))


class TestCancellation:
    @pytest.mark.parametrize("paid", [False, True])
    def test_cancel_returns_stock(self, engine, catalogue, place, paid):
        order = place()
        if paid:
            _process(ConfirmPayment(order_id=order.id))

        cancelled = _process(CancelOrder(order_id=order.id, reason="Changed my mind"))

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert cancelled.cancelled_by == Actor.CUSTOMER.value
        assert catalogue.levels("prod-widget").reserved == 0
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.RELEASED

    def test_cancel_after_shipping_is_rejected(self, engine, catalogue, place):
        order = place()
        _ship(order)

        with pytest.raises(InvalidTransition):
            _process(CancelOrder(order_id=order.id, reason="Too late"))

        assert _stored(order).status == OrderStatus.SHIPPED.value
        assert catalogue.levels("prod-widget").reserved == 2

    def test_cancel_twice_is_rejected(self, engine, catalogue, place):
        order = place()
        _process(CancelOrder(order_id=order.id))

        with pytest.raises(InvalidTransition):
            _process(CancelOrder(order_id=order.id))
        assert catalogue.levels("prod-widget").reserved == 0


class TestStockFollowsStoredStatus:
    @pytest.fixture()
    def failing_order_save(self, monkeypatch):
        repo_cls = type(current_domain.repository_for(Order))
        original_add = repo_cls.add

        def add_failing_for_orders(self, item, *args, **kwargs):
            if isinstance(item, Order):
                raise RuntimeError("storage unavailable")
            return original_add(self, item, *args, **kwargs)

        def _fail():
            monkeypatch.setattr(repo_cls, "add", add_failing_for_orders)

        yield _fail
        monkeypatch.undo()

    def test_unsaved_cancellation_keeps_the_hold(self, engine, catalogue, place, failing_order_save):
        order = place()
        failing_order_save()

        with pytest.raises(RuntimeError):
            _process(CancelOrder(order_id=order.id))

        assert catalogue.levels("prod-widget").reserved == 2
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.ACTIVE

    def test_unsaved_delivery_keeps_stock_on_hand(self, engine, catalogue, place, failing_order_save):
        order = place()
        _ship(order)
        failing_order_save()

        with pytest.raises(RuntimeError):
            _process(DeliverOrder(order_id=order.id))

        levels = catalogue.levels("prod-widget")
        assert levels.on_hand == 10
        assert levels.reserved == 2
        assert engine.coordinator.reservations_for(order.id).status == ReservationStatus.CONFIRMED


class TestStaffUpdate:
    def test_note_and_status_together(self, engine, place):
        order = place()

        updated = _process(UpdateOrder(order_id=order.id, status="paid", note="Paid at the counter"))

        stored = _stored(order)
        assert stored.status == OrderStatus.PAID.value
        assert stored.note == "Paid at the counter"
        assert updated.note == "Paid at the counter"

    def test_cancel_records_staff_and_reason(self, engine, catalogue, place):
        order = place()

        _process(UpdateOrder(order_id=order.id, status="cancelled", reason="Customer called"))

        stored = _stored(order)
        assert stored.cancelled_by == Actor.STAFF.value
        assert stored.cancellation_reason == "Customer called"
        assert catalogue.levels("prod-widget").reserved == 0

    def test_rejected_status_discards_other_edits(self, engine, place):
        order = place()

        with pytest.raises(InvalidTransition):
            _process(UpdateOrder(order_id=order.id, status="delivered", note="Left at the door"))

        stored = _stored(order)
        assert stored.status == OrderStatus.PENDING.value
        assert stored.note is None

    @pytest.mark.parametrize("paid", [False, True])
    def test_current_status_is_not_a_change(self, engine, place, paid):
        order = place()
        if paid:
            _process(ConfirmPayment(order_id=order.id))
        current = _stored(order).status

        with pytest.raises(InvalidTransition):
            _process(UpdateOrder(order_id=order.id, status=current, note="Checked"))

        stored = _stored(order)
        assert stored.status == current
        assert stored.note is None

    def test_edit_without_status_change(self, engine, place):
        order = place()

        _process(UpdateOrder(order_id=order.id, shipping_method="express courier"))

        stored = _stored(order)
        assert stored.shipping_method == "express courier"
        assert stored.status == OrderStatus.PENDING.value

    def test_empty_update(self, engine, place):
        order = place()
        with pytest.raises(ValidationError):
            _process(UpdateOrder(order_id=order.id))


class TestQueries:
    @pytest.fixture()
    def orders(self, engine, place):
        first = place(as_of=NOW, quantity=1)
        second = place(
            owner=GUEST,
            as_of=NOW + timedelta(hours=1),
            quantity=1,
            payment_type="cod",
            customer={"full_name": "Le Van C", "email": "c@example.com", "phone": "+84987654321"},
        )
        third = place(as_of=NOW + timedelta(hours=2), product_ref="prod-gadget", quantity=1)
        _process(ConfirmPayment(order_id=first.id))
        return first, second, third

    def test_lists_newest_first(self, orders):
        first, second, third = orders

        page, total = list_orders()

        assert total == 3
        assert [order.id for order in page] == [third.id, second.id, first.id]

    def test_filters_by_status(self, orders):
        page, total = list_orders(status="paid")
        assert total == 1
        assert page[0].id == orders[0].id

    def test_searches_customer_and_code(self, orders):
        _, second, third = orders

        by_name, _ = list_orders(search="le van")
        by_phone, _ = list_orders(search="987654")
        by_code, _ = list_orders(search=third.code.lower())

        assert [order.id for order in by_name] == [second.id]
        assert [order.id for order in by_phone] == [second.id]
        assert [order.id for order in by_code] == [third.id]

    def test_restricts_to_owner(self, orders):
        first, _, third = orders

        page, total = list_orders(owner=ACCOUNT)

        assert total == 2
        assert [order.id for order in page] == [third.id, first.id]

    def test_pages(self, orders):
        page, total = list_orders(page=2, page_size=2)
        assert total == 3
        assert [order.id for order in page] == [orders[0].id]

    @pytest.mark.parametrize("page, page_size", [(0, 15), (1, 0), (1, 51)])
    def test_rejects_bad_paging(self, engine, page, page_size):
        with pytest.raises(ValidationError):
            list_orders(page=page, page_size=page_size)

    def test_get_respects_ownership(self, orders):
        first, second, _ = orders

        assert get_order(first.id, owner=ACCOUNT).id == first.id
        assert get_order(second.id, owner=GUEST).id == second.id
        with pytest.raises(ObjectNotFoundError):
            get_order(second.id, owner=ACCOUNT)
        with pytest.raises(ObjectNotFoundError):
            get_order(first.id, owner=Owner.account("acct-999"))
