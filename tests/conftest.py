"""
conftest.py — Shared Test Fixtures for the fleet procurement service

Provides an in-memory SQLite database, FastAPI TestClient with auth
overrides, and factory fixtures for the quote request lifecycle
(organization, user, suppliers, a quote sent to two suppliers).

Business Rules:
- All tests run against isolated in-memory DB (no prod data risk)
- Auth is overridden so tests don't need a session cookie
- Each test function gets fresh tables
- Background tasks use TestSessionLocal (patched in where needed)

Called by: all test files via pytest autodiscovery
Depends on: app.models (Base), app.database (get_db), app.dependencies
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base, Organization, QuoteRequest, QuoteRequestItem, Supplier, User
from app.models.enums import QuoteStatus
from factories import make_thread

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory():
    """Sessionmaker bound to the test engine, for code that opens its own sessions."""
    return TestSessionLocal


@pytest.fixture()
def test_org(db_session: Session) -> Organization:
    org = Organization(name="Acme Fleet Services")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture()
def other_org(db_session: Session) -> Organization:
    org = Organization(name="Other Fleet Co")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture()
def test_user(db_session: Session, test_org: Organization) -> User:
    """A standard buyer user."""
    user = User(
        organization_id=test_org.id,
        email="buyer@acmefleet.com",
        name="Test Buyer",
        role="buyer",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def outsider(db_session: Session, other_org: Organization) -> User:
    user = User(organization_id=other_org.id, email="someone@otherfleet.com", name="Outsider")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def suppliers(db_session: Session, test_org: Organization) -> tuple[Supplier, Supplier]:
    a = Supplier(
        organization_id=test_org.id, name="Alpha Parts", email="sales@alphaparts.com",
        contact_person="Ann Alpha",
    )
    b = Supplier(
        organization_id=test_org.id, name="Bravo Supply", email="quotes@bravosupply.com",
        contact_person="Bob Bravo",
    )
    db_session.add_all([a, b])
    db_session.commit()
    return a, b


@pytest.fixture()
def sent_quote(db_session: Session, test_org, test_user, suppliers):
    """Quote request sent to two suppliers, both threads SENT, no replies.

    Returns (quote, (thread_a, st_a), (thread_b, st_b)).
    """
    a, b = suppliers
    quote = QuoteRequest(
        organization_id=test_org.id,
        quote_number="QR-2026-0001",
        title="Brake parts for unit 42",
        status=QuoteStatus.SENT,
        supplier_id=a.id,
        additional_supplier_ids=[b.id],
        created_by_id=test_user.id,
    )
    db_session.add(quote)
    db_session.flush()
    db_session.add(QuoteRequestItem(quote_request_id=quote.id, part_number="BRK-100", quantity=4))
    ta = make_thread(db_session, quote, a, is_primary=True)
    tb = make_thread(db_session, quote, b)
    db_session.add_all(
        [
            QuoteRequestItem(
                quote_request_id=quote.id, supplier_id=a.id, part_number="BRK-100",
                quantity=4, unit_price=Decimal("25.00"), total_price=Decimal("100.00"),
                estimated_delivery_days=3,
            ),
            QuoteRequestItem(
                quote_request_id=quote.id, supplier_id=a.id, part_number="BRK-200",
                quantity=2, unit_price=Decimal("12.50"), total_price=Decimal("25.00"),
            ),
            QuoteRequestItem(
                quote_request_id=quote.id, supplier_id=b.id, part_number="BRK-100",
                quantity=4, unit_price=Decimal("30.00"), total_price=Decimal("120.00"),
            ),
        ]
    )
    db_session.commit()
    return quote, ta, tb


@pytest.fixture()
def client(db_session: Session, test_user: User) -> TestClient:
    """FastAPI TestClient with auth overridden to return test_user."""
    from app.database import get_db
    from app.dependencies import require_user
    from app.main import app

    def _override_db():
        yield db_session

    def _override_user():
        return test_user

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[require_user] = _override_user
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
