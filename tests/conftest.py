import os
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

# Cheap bcrypt cost for the suite; must be set before auth is imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import schemas
from auth import create_token, hash_password
from main import create_app
from storage import Storage

NOW = datetime(2024, 3, 15, 12, 30, 0)
PASSWORD = "s3cret-pass"
PASSWORD_HASH = hash_password(PASSWORD)


def product_data(**overrides) -> schemas.ProductCreate:
    data = {
        "title": "Gaming Mouse",
        "description": "Ergonomic gaming mouse",
        "price": 1999.0,
        "stock": 50,
        "brand": "Logitech",
        "category": "Electronics",
        "thumbnail": "https://img.example.com/mouse.jpg",
        "images": ["https://img.example.com/mouse.jpg"],
    }
    data.update(overrides)
    return schemas.ProductCreate(**data)


def user_data(username: str = "jane", is_admin: bool = False, **overrides) -> schemas.UserCreate:
    data = {
        "username": username,
        "name": username.title(),
        "email": f"{username}@example.com",
        "password": PASSWORD_HASH,
        "is_admin": is_admin,
    }
    data.update(overrides)
    return schemas.UserCreate(**data)


def order_data(user_id: int, total_amount: float = 100.0, **overrides) -> schemas.OrderCreate:
    data = {
        "user_id": user_id,
        "total_amount": total_amount,
        "shipping_address": "1 Sample Street, Pune, MH, 411001",
        "payment_method": "UPI",
    }
    data.update(overrides)
    return schemas.OrderCreate(**data)


@pytest.fixture
def storage():
    store = Storage(clock=lambda: NOW)
    yield store
    store.dispose()


@pytest.fixture
def customer(storage):
    return storage.create_user(user_data("jane"))


@pytest.fixture
def admin(storage):
    return storage.create_user(user_data("root", is_admin=True))


@pytest.fixture
def client(storage):
    with TestClient(create_app(storage)) as test_client:
        yield test_client


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_token(user.id)}"}
