"""
Shared pytest fixtures for the Sales Operations Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_customer / make_product / make_quotation /
      make_workflow: ORM factories returning flushed rows
"""

from decimal import Decimal

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import User
from app.models.customer import Customer, Product
from app.models.quotation import Quotation, QuotationItem


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(full_name="Test User", status="active", role="sales_manager", email=None):
        counter["n"] += 1
        u = User(
            email=email or f"user{counter['n']}@example.com",
            full_name=full_name,
            role=role,
            status=status,
        )
        _db.session.add(u)
        _db.session.flush()
        return u

    return _make


@pytest.fixture()
def make_customer():
    def _make(company_name="Acme Corp", customer_type="enterprise", is_active=True, **kwargs):
        c = Customer(
            company_name=company_name,
            contact_person=kwargs.pop("contact_person", "Jane Buyer"),
            email=kwargs.pop("email", "buyer@acme.example"),
            customer_type=customer_type,
            is_active=is_active,
            **kwargs,
        )
        _db.session.add(c)
        _db.session.flush()
        return c

    return _make


@pytest.fixture()
def make_product():
    counter = {"n": 0}

    def _make(base_price=1000, name="Widget", min_order_qty=1, is_active=True):
        counter["n"] += 1
        p = Product(
            sku=f"SKU-{counter['n']:04d}",
            name=name,
            base_price=Decimal(str(base_price)),
            min_order_qty=min_order_qty,
            is_active=is_active,
        )
        _db.session.add(p)
        _db.session.flush()
        return p

    return _make


@pytest.fixture()
def make_quotation(make_customer, make_product):
    """Insert a quotation directly (bypasses numbering and pricing)."""
    counter = {"n": 0}

    def _make(total_amount=1000, status="DRAFT", customer=None, number=None, quantity=1):
        counter["n"] += 1
        customer = customer or make_customer()
        product = make_product(base_price=total_amount)
        total = Decimal(str(total_amount))
        q = Quotation(
            quotation_number=number or f"TST-2024-{counter['n']:06d}",
            customer_id=customer.id,
            status=status,
            subtotal=total,
            total_amount=total,
        )
        q.items = [QuotationItem(
            product_id=product.id, quantity=quantity,
            unit_price=total, line_total=total,
        )]
        _db.session.add(q)
        _db.session.flush()
        return q

    return _make


@pytest.fixture()
def make_workflow():
    """Create a workflow through the service so definitions are validated."""
    from app.services import workflow_service

    counter = {"n": 0}

    def _make(levels, conditions=None, priority=1, name=None, is_active=True):
        counter["n"] += 1
        return workflow_service.create_workflow({
            "name": name or f"Workflow {counter['n']}",
            "conditions": conditions or [],
            "approval_levels": levels,
            "priority": priority,
            "is_active": is_active,
        })

    return _make
