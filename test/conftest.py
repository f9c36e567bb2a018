import json
import os

# Must be set before tabletop.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["ENVIRONMENT"] = "test"

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from tabletop import models, realtime
from tabletop.db import engine, get_session
from tabletop.main import app


class RecordingRedis:
    """Stands in for the Redis client; keeps what would have been published."""

    def __init__(self):
        self.published: list[tuple[str, dict]] = []

    def publish(self, channel: str, data: str) -> int:
        self.published.append((channel, json.loads(data)))
        return 1

    def events(self, channel: str) -> list[dict]:
        return [event for ch, event in self.published if ch == channel]


@pytest.fixture(autouse=True)
def redis_stub(monkeypatch):
    stub = RecordingRedis()
    monkeypatch.setattr(realtime, "get_redis", lambda: stub)
    return stub


@pytest.fixture
def session():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def restaurant_menu(session):
    """A restaurant with one table and a small menu, written straight to the database."""
    restaurant = models.Restaurant(name="Cafe Test", slug="cafe-test")
    session.add(restaurant)
    session.flush()

    category = models.Category(name="Mains", restaurant_id=restaurant.id)
    session.add(category)
    session.flush()

    burger = models.MenuItem(
        restaurant_id=restaurant.id, category_id=category.id, name="Burger", price_cents=1250
    )
    fries = models.MenuItem(
        restaurant_id=restaurant.id, category_id=category.id, name="Fries", price_cents=400
    )
    soup = models.MenuItem(
        restaurant_id=restaurant.id, category_id=category.id, name="Soup", price_cents=600, sold_out=True
    )
    table = models.Table(name="T1", restaurant_id=restaurant.id)
    session.add_all([burger, fries, soup, table])
    session.commit()

    return SimpleNamespace(
        restaurant=restaurant,
        category=category,
        burger=burger,
        fries=fries,
        soup=soup,
        table=table,
    )


class Api:
    """Small helper around the TestClient for the auth round trips."""

    def __init__(self, client: TestClient):
        self.client = client

    def login(self, email: str, password: str) -> dict:
        response = self.client.post("/token", data={"username": email, "password": password})
        assert response.status_code == 200, response.text
        # Cookie would take precedence over the header on later requests
        self.client.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    def register_owner(
        self,
        restaurant_name: str = "Cafe Test",
        slug: str = "cafe-test",
        email: str = "owner@cafe.test",
        password: str = "secret123",
    ) -> SimpleNamespace:
        response = self.client.post("/register", json={
            "restaurant_name": restaurant_name,
            "slug": slug,
            "email": email,
            "password": password,
            "name": "Owner",
        })
        assert response.status_code == 200, response.text
        return SimpleNamespace(
            restaurant_id=response.json()["restaurant_id"],
            headers=self.login(email, password),
        )

    def add_staff(self, owner: SimpleNamespace, email: str, role: str) -> dict:
        response = self.client.post("/staff", headers=owner.headers, json={
            "email": email,
            "role": role,
            "restaurant_id": owner.restaurant_id,
        })
        assert response.status_code == 200, response.text
        return self.login(email, response.json()["temp_password"])

    def add_menu_item(self, owner: SimpleNamespace, category_id: str, name: str, price_cents: int) -> dict:
        response = self.client.post("/menu-items", headers=owner.headers, json={
            "category_id": category_id,
            "name": name,
            "price_cents": price_cents,
        })
        assert response.status_code == 200, response.text
        return response.json()


@pytest.fixture
def api(client):
    return Api(client)


@pytest.fixture
def owner(api):
    return api.register_owner()
