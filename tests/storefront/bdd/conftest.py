"""Shared BDD fixtures and step definitions for the storefront."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from storefront.cart.owner import Owner
from storefront.order.order import Order


@pytest.fixture()
def shopper():
    return Owner.account("acct-bdd-001")


@pytest.fixture()
def other_shopper():
    return Owner.account("acct-bdd-002")


@pytest.fixture()
def outcome():
    """Container for what the When steps produced."""
    return {"order": None, "error": None, "other_order": None, "other_error": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a shopper with {quantity:d} of "{product_ref}" in the cart'))
def shopper_cart(add_line, shopper, quantity, product_ref):
    add_line(shopper, product_ref, quantity)


@given(parsers.cfparse('another shopper with {quantity:d} of "{product_ref}" in the cart'))
def other_shopper_cart(add_line, other_shopper, quantity, product_ref):
    add_line(other_shopper, product_ref, quantity)


@given(parsers.cfparse('a placed order for {quantity:d} of "{product_ref}"'))
def placed_order(add_line, checkout, shopper, outcome, quantity, product_ref):
    add_line(shopper, product_ref, quantity)
    outcome["order"] = checkout(shopper, payment_type="bank").order


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def order_status_is(outcome, status):
    stored = current_domain.repository_for(Order).get(outcome["order"].id)
    assert stored.status == status


@then(parsers.cfparse('"{product_ref}" has {on_hand:d} on hand and {reserved:d} reserved'))
def stock_levels_are(catalogue, product_ref, on_hand, reserved):
    levels = catalogue.levels(product_ref)
    assert (levels.on_hand, levels.reserved) == (on_hand, reserved)
