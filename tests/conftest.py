import os

# Keep test runs from writing log files or touching a local database
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from medistore_orders.database import build_engine, build_session_factory, get_session
from medistore_orders.entities import Base, Medicine, MedicineStatus, Role, User
from medistore_orders.identity import Identity
from medistore_orders.main import app
from medistore_orders.models import CheckoutRequest


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'orders.db'}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def users(session):
    accounts = SimpleNamespace(
        admin=User(name="Admin", email="admin@test.com", role=Role.ADMIN),
        customer=User(name="Alice Customer", email="alice@test.com", role=Role.CUSTOMER),
        other_customer=User(name="Bob Customer", email="bob@test.com", role=Role.CUSTOMER),
        seller=User(name="City Pharmacy", email="city@test.com", role=Role.SELLER),
        other_seller=User(name="Green Cross", email="green@test.com", role=Role.SELLER),
    )
    session.add_all(vars(accounts).values())
    session.commit()
    return accounts


def as_identity(user) -> Identity:
    return Identity(user_id=user.id, role=user.role)


def headers_for(user) -> dict:
    return {"X-User-Id": user.id, "X-User-Role": user.role.value}


@pytest.fixture
def customer(users):
    return as_identity(users.customer)


@pytest.fixture
def other_customer(users):
    return as_identity(users.other_customer)


@pytest.fixture
def admin(users):
    return as_identity(users.admin)


@pytest.fixture
def seller(users):
    return as_identity(users.seller)


@pytest.fixture
def other_seller(users):
    return as_identity(users.other_seller)


@pytest.fixture
def make_medicine(session, users):
    """Creates a committed medicine and returns its id."""
    def factory(name="Paracetamol 500mg", price="10.00", stock=5,
                status=MedicineStatus.ACTIVE, seller=None):
        medicine = Medicine(
            name=name,
            price=Decimal(price),
            stock=stock,
            status=status,
            seller_id=(seller or users.seller).id,
        )
        session.add(medicine)
        session.commit()
        return medicine.id
    return factory


@pytest.fixture
def ledger_state(session_factory):
    """Reads (stock, status) of a medicine through a fresh session."""
    def read(medicine_id):
        fresh = session_factory()
        try:
            medicine = fresh.get(Medicine, medicine_id)
            return medicine.stock, medicine.status
        finally:
            fresh.close()
    return read


def cart(*lines, address="12 Baker Street", phone="+441234567"):
    return CheckoutRequest(
        address=address,
        phone=phone,
        items=[{"medicineId": medicine_id, "quantity": quantity} for medicine_id, quantity in lines],
    )


@pytest.fixture
def client(session_factory):
    def override_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()
