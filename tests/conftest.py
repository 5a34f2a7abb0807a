from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from config import TestConfig
from extensions import db


class FakeClock:
    def __init__(self, start=datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    app = create_app(TestConfig, clock=clock)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def services(ctx):
    return ctx.extensions["licensing"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def catalog_setup(services):
    """Software 1 bound to key type 2 (9.99, 720h); key type 1 exists but is unbound."""
    catalog = services.catalog
    software = catalog.create_software("DemoApp", version="1.0.0")
    catalog.create_key_type("Trial", hours=24, price="0")
    monthly = catalog.create_key_type("Monthly", hours=720, price="9.99")
    catalog.bind(software.id, monthly.id)
    return software, monthly


@pytest.fixture
def make_salesperson(services):
    counter = {"n": 0}

    def make(username=None, password="secret123", **fields):
        counter["n"] += 1
        username = username or f"seller{counter['n']}"
        return services.accounts.create_salesperson(username, password, **fields)

    return make


@pytest.fixture
def link(services):
    """Attach child under parent through a real invitation."""
    def attach(parent, child):
        invitation = services.hierarchy.create_invitation(
            parent.id, email=f"{child.username}@example.com"
        )
        return services.hierarchy.accept_invitation(invitation.invite_code, child.id)

    return attach


@pytest.fixture
def make_admin(services):
    def make(username="root", password="adminpass"):
        return services.accounts.create_admin(username, password)

    return make
