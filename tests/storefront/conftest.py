import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture
from protean.utils.globals import g

from storefront.cart.management import AddCartLine
from storefront.catalogue.memory import InMemoryCatalogue
from storefront.checkout.factory import PlaceOrder
from storefront.config import StorefrontSettings
from storefront.engine import build_storefront


@pytest.fixture(scope="session")
def storefront_bed():
    from storefront.domain import storefront

    bed = DomainFixture(storefront)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(storefront_bed):
    with storefront_bed.domain_context():
        yield

        # Clear all databases
        for _, provider in current_domain.providers.items():
            provider._data_reset()

        # Drain event stores
        current_domain.event_store.store._data_reset()


@pytest.fixture()
def catalogue():
    catalogue = InMemoryCatalogue()
    catalogue.add_product("prod-widget", "WID-001", "Industrial Widget", 500_000, on_hand=10)
    catalogue.add_product("prod-gadget", "GAD-001", "Pressure Gadget", 250_000, on_hand=5)
    catalogue.add_product("prod-last", "LST-001", "Last Unit Valve", 200_000, on_hand=1)
    return catalogue


@pytest.fixture()
def settings():
    return StorefrontSettings()


@pytest.fixture()
def engine(settings, catalogue):
    """The storefront the command handlers in this test resolve."""
    engine = build_storefront(settings, catalogue)
    g.engine = engine
    return engine


CUSTOMER = {"full_name": "Tran Thi B", "email": "b@example.com", "phone": "+84912345678"}
ADDRESS = {"line1": "45 Le Loi", "city": "Ho Chi Minh City", "country": "VN"}


@pytest.fixture()
def add_line(engine):
    """Add a product to the owner's cart; returns the line id."""

    def _add_line(owner, product_ref, quantity=1):
        return current_domain.process(
            AddCartLine(product_ref=product_ref, quantity=quantity, **owner.as_fields()),
            asynchronous=False,
        )

    return _add_line


@pytest.fixture()
def checkout(engine):
    """Place an order for the owner's cart, with overridable command fields."""

    def _checkout(owner, as_of=None, **overrides):
        fields = {"customer": CUSTOMER, "shipping_address": ADDRESS}
        fields.update(overrides)
        if "line_ids" in fields:
            fields["line_ids"] = list(fields["line_ids"])
        return current_domain.process(
            PlaceOrder(placed_at=as_of, **owner.as_fields(), **fields),
            asynchronous=False,
        )

    return _checkout
