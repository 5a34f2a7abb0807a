import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import distinct, func, select

from app import create_app
from config import TestConfig
from extensions import db
from licensing.errors import (
    AuthorizationError, IntegrityViolation, InvalidState, Mismatch, NotFound, ValidationError,
)
from licensing.key_store import Creator, KeyFilter, SaleDetails
from models import Key, SalespersonProduct, SalespersonSale
from utils import as_utc

ADMIN = Creator.admin(1)


@pytest.fixture
def seller(services, catalog_setup, make_salesperson):
    software, monthly = catalog_setup
    salesperson = make_salesperson(commission_rate="0.2")
    services.catalog.assign_product(salesperson.id, software.id, monthly.id, key_gen_limit=10)
    return salesperson


def test_admin_mint_snapshots_key_type(services, catalog_setup):
    software, monthly = catalog_setup
    result = services.keys.mint(software.id, monthly.id, 5, ADMIN)

    assert len(result.keys) == 5
    assert result.sale is None
    for key in result.keys:
        assert key.status == "unused"
        assert key.hours == 720
        assert key.price == Decimal("9.99")
        assert key.key_type_name == "Monthly"
        assert key.software_name == "DemoApp"
        assert key.creator_type == "admin"
        assert key.salesperson_id is None
    assert len({key.code for key in result.keys}) == 5
    assert len({key.key_code for key in result.keys}) == 5


@pytest.mark.parametrize("count", [0, -1, 1001, "many"])
def test_mint_count_bounds(services, catalog_setup, count):
    software, monthly = catalog_setup
    with pytest.raises(ValidationError):
        services.keys.mint(software.id, monthly.id, count, ADMIN)
    assert Key.query.count() == 0


def test_mint_rejects_inactive_catalog_entries(services, catalog_setup):
    software, monthly = catalog_setup
    services.catalog.set_key_type_active(monthly.id, False)
    with pytest.raises(InvalidState):
        services.keys.mint(software.id, monthly.id, 1, ADMIN)

    services.catalog.set_key_type_active(monthly.id, True)
    services.catalog.set_software_active(software.id, False)
    with pytest.raises(InvalidState):
        services.keys.mint(software.id, monthly.id, 1, ADMIN)


def test_mint_unknown_entities(services, catalog_setup):
    software, monthly = catalog_setup
    with pytest.raises(NotFound):
        services.keys.mint(software.id, 999, 1, ADMIN)
    with pytest.raises(NotFound):
        services.keys.mint(999, monthly.id, 1, ADMIN)


def test_activate_sets_expiry_from_snapshot_hours(services, catalog_setup, clock):
    software, monthly = catalog_setup
    key = services.keys.mint(software.id, monthly.id, 1, ADMIN).keys[0]

    activated = services.keys.activate(key.code, key.key_code, software.id,
                                       device_info="laptop-01", activator_id=42)

    assert activated.status == "used"
    assert as_utc(activated.activated_at) == clock.now
    assert as_utc(activated.expired_at) == clock.now + timedelta(hours=720)
    assert activated.device_info == "laptop-01"
    assert activated.user_id == 42
    assert activated.is_valid(clock.now)
    assert not activated.is_valid(clock.now + timedelta(hours=721))


def test_second_activation_fails_without_changing_key(services, catalog_setup, clock):
    software, monthly = catalog_setup
    key = services.keys.mint(software.id, monthly.id, 1, ADMIN).keys[0]
    services.keys.activate(key.code, key.key_code, software.id, device_info="first")
    first_expiry = as_utc(services.keys.get(key.id).expired_at)

    clock.advance(hours=1)
    with pytest.raises(InvalidState):
        services.keys.activate(key.code, key.key_code, software.id, device_info="second")

    stored = services.keys.get(key.id)
    assert stored.device_info == "first"
    assert as_utc(stored.expired_at) == first_expiry


def test_activate_requires_both_codes(services, catalog_setup):
    with pytest.raises(ValidationError):
        services.keys.activate("", "abc", 1)


def test_activate_unknown_key(services, catalog_setup):
    software, _ = catalog_setup
    with pytest.raises(NotFound):
        services.keys.activate("nope", "nope", software.id)


def test_activate_for_wrong_software_is_mismatch(services, catalog_setup):
    software, monthly = catalog_setup
    other = services.catalog.create_software("OtherApp")
    key = services.keys.mint(software.id, monthly.id, 1, ADMIN).keys[0]
    with pytest.raises(Mismatch):
        services.keys.activate(key.code, key.key_code, other.id)
    assert services.keys.get(key.id).status == "unused"


def test_activate_for_deactivated_software_is_mismatch(services, catalog_setup):
    software, monthly = catalog_setup
    key = services.keys.mint(software.id, monthly.id, 1, ADMIN).keys[0]
    services.catalog.set_software_active(software.id, False)
    with pytest.raises(Mismatch):
        services.keys.activate(key.code, key.key_code, software.id)


def test_blacklisted_key_cannot_be_activated(services, catalog_setup):
    software, monthly = catalog_setup
    key = services.keys.mint(software.id, monthly.id, 1, ADMIN).keys[0]
    services.keys.set_blacklisted(key.id, True)
    with pytest.raises(InvalidState):
        services.keys.activate(key.code, key.key_code, software.id)


def test_void_is_terminal(services, catalog_setup):
    software, monthly = catalog_setup
    key = services.keys.mint(software.id, monthly.id, 1, ADMIN).keys[0]

    assert services.keys.void(key.id).status == "void"
    with pytest.raises(InvalidState):
        services.keys.void(key.id)
    with pytest.raises(InvalidState):
        services.keys.activate(key.code, key.key_code, software.id)


def test_used_key_can_be_voided(services, catalog_setup, clock):
    software, monthly = catalog_setup
    key = services.keys.mint(software.id, monthly.id, 1, ADMIN).keys[0]
    services.keys.activate(key.code, key.key_code, software.id)
    voided = services.keys.void(key.id)
    assert voided.status == "void"
    assert not voided.is_valid(clock.now)


def test_salesperson_mint_records_sale_and_consumes_quota(services, catalog_setup, seller):
    software, monthly = catalog_setup
    details = SaleDetails(customer_name="Acme", customer_email="ops@acme.test")
    result = services.keys.mint(software.id, monthly.id, 5, Creator.salesperson(seller.id), details)

    sale = result.sale
    assert sale.key_count == 5
    assert sale.sale_amount == Decimal("49.95")
    assert sale.commission_amount == Decimal("9.9900")
    assert sale.customer_name == "Acme"
    assert sale.sale_code.startswith("CODE")
    assert all(key.sale_id == sale.id for key in result.keys)
    assert all(key.key_code.startswith("KEY") for key in result.keys)
    assert all(key.salesperson_id == seller.id for key in result.keys)

    product = SalespersonProduct.query.filter_by(salesperson_id=seller.id).one()
    assert product.keys_generated == 5
    refreshed = services.accounts.get_salesperson(seller.id)
    assert refreshed.total_sales == Decimal("49.95")
    assert refreshed.total_commission == Decimal("9.9900")


def test_quota_exceeded_changes_nothing(services, catalog_setup, seller):
    software, monthly = catalog_setup
    creator = Creator.salesperson(seller.id)
    services.keys.mint(software.id, monthly.id, 8, creator)

    with pytest.raises(AuthorizationError):
        services.keys.mint(software.id, monthly.id, 3, creator)

    product = SalespersonProduct.query.filter_by(salesperson_id=seller.id).one()
    assert product.keys_generated == 8
    assert Key.query.count() == 8
    assert SalespersonSale.query.count() == 1
    services.keys.mint(software.id, monthly.id, 2, creator)


def test_salesperson_without_product_cannot_mint(services, catalog_setup, make_salesperson):
    software, monthly = catalog_setup
    stranger = make_salesperson()
    with pytest.raises(AuthorizationError):
        services.keys.mint(software.id, monthly.id, 1, Creator.salesperson(stranger.id))


def test_disabled_salesperson_cannot_mint(services, catalog_setup, seller):
    software, monthly = catalog_setup
    services.accounts.update_salesperson(seller.id, status="suspended")
    with pytest.raises(AuthorizationError):
        services.keys.mint(software.id, monthly.id, 1, Creator.salesperson(seller.id))


def test_failed_mint_rolls_back_quota_and_sale(services, catalog_setup, seller, monkeypatch):
    software, monthly = catalog_setup
    creator = Creator.salesperson(seller.id)
    monkeypatch.setattr(services.codes, "salesperson_key_code", lambda: "KEYFIXED0001")
    services.keys.mint(software.id, monthly.id, 1, creator)

    with pytest.raises(IntegrityViolation):
        services.keys.mint(software.id, monthly.id, 1, creator)

    product = SalespersonProduct.query.filter_by(salesperson_id=seller.id).one()
    assert product.keys_generated == 1
    assert SalespersonSale.query.count() == 1
    assert services.accounts.get_salesperson(seller.id).total_sales == Decimal("9.99")


def test_get_is_scoped_to_owner(services, catalog_setup, seller, make_salesperson):
    software, monthly = catalog_setup
    key = services.keys.mint(software.id, monthly.id, 1, Creator.salesperson(seller.id)).keys[0]
    other = make_salesperson()
    assert services.keys.get(key.id, scope_salesperson_id=seller.id).id == key.id
    with pytest.raises(AuthorizationError):
        services.keys.get(key.id, scope_salesperson_id=other.id)


def test_list_filters_and_paginates(services, catalog_setup, seller):
    software, monthly = catalog_setup
    services.keys.mint(software.id, monthly.id, 3, ADMIN)
    services.keys.mint(software.id, monthly.id, 2, Creator.salesperson(seller.id))

    everything = services.keys.list(page=1, page_size=4)
    assert everything.total == 5
    assert len(everything.items) == 4
    assert everything.items[0].id > everything.items[-1].id

    mine = services.keys.list(scope_salesperson_id=seller.id)
    assert mine.total == 2
    by_creator = services.keys.list(KeyFilter(creator_type="admin"))
    assert by_creator.total == 3

    with pytest.raises(ValidationError):
        services.keys.list(KeyFilter(status="stolen"))


def test_status_lookup(services, catalog_setup):
    software, monthly = catalog_setup
    keys = services.keys.mint(software.id, monthly.id, 2, ADMIN).keys
    assert [k.id for k in services.keys.status(code=keys[0].code)] == [keys[0].id]
    assert len(services.keys.status(software_id=software.id)) == 2
    with pytest.raises(ValidationError):
        services.keys.status()
    with pytest.raises(NotFound):
        services.keys.status(code="missing")


@pytest.fixture
def file_app(tmp_path, clock):
    """App on a SQLite file so that threads get their own connections."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'keys.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

    app = create_app(FileConfig, clock=clock)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def test_concurrent_batches_mint_unique_codes(file_app):
    with file_app.app_context():
        catalog = file_app.extensions["licensing"].catalog
        software = catalog.create_software("DemoApp")
        monthly = catalog.create_key_type("Monthly", hours=720, price="9.99")
        catalog.bind(software.id, monthly.id)
        software_id, key_type_id = software.id, monthly.id

    errors = []

    def mint_batches():
        with file_app.app_context():
            keys = file_app.extensions["licensing"].keys
            try:
                for _ in range(3):
                    keys.mint(software_id, key_type_id, 25, ADMIN)
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=mint_batches) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    with file_app.app_context():
        total = db.session.scalar(select(func.count(Key.id)))
        assert total == 4 * 3 * 25
        assert db.session.scalar(select(func.count(distinct(Key.code)))) == total
        assert db.session.scalar(select(func.count(distinct(Key.key_code)))) == total


def test_sequential_batches_mint_unique_codes(services, catalog_setup, seller):
    software, monthly = catalog_setup
    for _ in range(5):
        services.keys.mint(software.id, monthly.id, 40, ADMIN)
    services.sales.generate_keys(seller.id, software.id, monthly.id, 10)

    total = db.session.scalar(select(func.count(Key.id)))
    assert total == 210
    assert db.session.scalar(select(func.count(distinct(Key.code)))) == total
    assert db.session.scalar(select(func.count(distinct(Key.key_code)))) == total
