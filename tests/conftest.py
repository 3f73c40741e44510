"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import select

from tradelink.data.database import Database
from tradelink.data.schema import Category, MembershipTier, Order, UserRole
from tradelink.services import (
    AccountService,
    Actor,
    OrderService,
    RFQService,
    clear_rates_cache,
)

JWT_SECRET = "test-secret-key-123"


@pytest.fixture(autouse=True)
def reset_rates_cache():
    """Commission rates are cached per process; start every test cold."""
    clear_rates_cache()
    yield
    clear_rates_cache()


@pytest.fixture
def database():
    """Fresh in-memory database with all tables."""
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def users(database) -> dict[str, Actor]:
    """Seed the marketplace accounts.

    The admin is created first so it gets id 1, the demo identity used
    when authentication is disabled.
    """
    with database.session_scope() as session:
        accounts = AccountService(session)
        admin = accounts.create_user("admin@tradelink.test", "Ada Admin", UserRole.ADMIN)
        buyer = accounts.create_user("buyer@acme.test", "Bob Buyer", UserRole.BUYER)
        supplier = accounts.create_user(
            "sales@steelworks.test", "Sam Supplier", UserRole.SUPPLIER, business_name="Steelworks Ltd"
        )
        gold_supplier = accounts.create_user(
            "sales@polymer.test",
            "Gina Gold",
            UserRole.SUPPLIER,
            business_name="Polymer Goods",
            membership_tier=MembershipTier.GOLD,
        )
        other_buyer = accounts.create_user("buyer@globex.test", "Olga Other", UserRole.BUYER)
        mediator = accounts.create_user("mediator@tradelink.test", "Max Mediator", UserRole.ADMIN)

        accounts.update_supplier_profile(supplier.id, bank_name="First Bank", account_number="12345678")
        accounts.update_supplier_profile(gold_supplier.id, paypal_email="payouts@polymer.test")

        seeded = {
            "admin": admin,
            "buyer": buyer,
            "supplier": supplier,
            "gold_supplier": gold_supplier,
            "other_buyer": other_buyer,
            "mediator": mediator,
        }
        return {name: Actor(user_id=user.id, role=UserRole(user.role)) for name, user in seeded.items()}


@pytest.fixture
def session(database, users):
    """A session on the seeded database; work is rolled back afterwards."""
    session = database.get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def category(session):
    category = Category(name="Fasteners")
    session.add(category)
    session.flush()
    return category


@pytest.fixture
def place_order(session, users):
    """Factory: RFQ -> quotation -> accepted order, optionally marked paid."""

    def _place(total=1000.0, buyer="buyer", supplier="supplier", paid=True, category_id=None):
        rfqs = RFQService(session)
        rfq = rfqs.create_rfq(users[buyer], "Steel brackets", quantity=100, category_id=category_id)
        quotation = rfqs.create_quotation(
            rfq.id, users[supplier], price_per_unit=round(total / 100, 2), total_price=total
        )
        rfqs.accept_quotation(quotation.id, users[buyer])
        order = session.scalar(select(Order).where(Order.quotation_id == quotation.id))
        if paid:
            OrderService(session).mark_paid(order.id, users["admin"])
        return order

    return _place


@pytest.fixture
def jwt_secret():
    """Secret shared by tokens and the auth middleware."""
    return JWT_SECRET


@pytest.fixture
def make_token():
    """Factory fixture to create JWT tokens."""

    def _make_token(user_id, role, expires_delta=timedelta(hours=1), secret=JWT_SECRET, **extra_claims):
        now = datetime.now(timezone.utc)
        claims = {"sub": str(user_id), "role": UserRole(role).value, "iat": now}
        if expires_delta is not None:
            claims["exp"] = now + expires_delta
        claims.update(extra_claims)
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make_token
