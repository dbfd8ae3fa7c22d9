import datetime
import os

os.environ["DATABASE_URL"] = "sqlite:///./test_rentaltool.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.pop("JWT_AUDIENCE", None)

import pytest
import jwt
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

from . import config
from .app import app
from .auth import CurrentUser, get_current_user
from .database import engine
from .models import Customer, InventoryItem, ItemCondition, RentalCreate, RentalItemCreate
from .rentals import create_rental

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

START = datetime.datetime(2024, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)
END = datetime.datetime(2024, 1, 3, 10, 0, tzinfo=datetime.timezone.utc)


def create_access_token(data: dict, expires_delta: datetime.timedelta | None = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.datetime.now(datetime.timezone.utc) + expires_delta
    else:
        expire = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(minutes=15)
    to_encode.update({"exp": expire})
    if config.JWT_AUDIENCE and "aud" not in to_encode:
        to_encode["aud"] = config.JWT_AUDIENCE
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


@pytest.fixture(autouse=True)
def reset_database():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides = {}


def mock_user():
    return CurrentUser(id=USER_ID)


def mock_other_user():
    return CurrentUser(id=OTHER_USER_ID)


@pytest.fixture
def auth_client(client):
    app.dependency_overrides[get_current_user] = mock_user
    return client


@pytest.fixture
def make_customer(session):
    def _make(user_id=USER_ID, name="John Doe", **fields):
        customer = Customer(user_id=user_id, name=name, **fields)
        session.add(customer)
        session.commit()
        session.refresh(customer)
        return customer

    return _make


@pytest.fixture
def make_item(session):
    def _make(
        user_id=USER_ID,
        name="Camping tent",
        quantity_total=3,
        pricing=None,
        condition=ItemCondition.GOOD,
        **fields,
    ):
        item = InventoryItem(
            user_id=user_id,
            name=name,
            quantity_total=quantity_total,
            pricing=pricing or {"daily": 100.0, "weekly": 500.0},
            condition=condition,
            **fields,
        )
        session.add(item)
        session.commit()
        session.refresh(item)
        return item

    return _make


@pytest.fixture
def make_rental(session):
    def _make(customer, lines, start=START, end=END, user_id=USER_ID, **fields):
        data = RentalCreate(
            customer_id=customer.id,
            start_date=start,
            end_date=end,
            items=[
                RentalItemCreate(inventory_item_id=item.id, quantity=quantity)
                for item, quantity in lines
            ],
            **fields,
        )
        return create_rental(session, user_id, data)

    return _make
