from decimal import Decimal

import pytest

from licensing.errors import (
    AuthorizationError, IntegrityViolation, InvalidState, NotFound, ValidationError,
)
from licensing.key_store import Creator
from models import SoftwareKeyType


def test_create_software_and_key_type(services):
    software = services.catalog.create_software("Editor", version="2.1", announcement="hello")
    key_type = services.catalog.create_key_type("Yearly", hours=8760, price="99.00")
    assert software.id and software.is_active
    assert key_type.hours == 8760
    assert key_type.price == Decimal("99.00")


def test_names_are_unique(services):
    services.catalog.create_software("Editor")
    with pytest.raises(InvalidState):
        services.catalog.create_software("Editor")
    services.catalog.create_key_type("Yearly", hours=1, price=1)
    with pytest.raises(InvalidState):
        services.catalog.create_key_type("Yearly", hours=2, price=2)


@pytest.mark.parametrize("hours,price", [
    (0, "1"), ("x", "1"), (1, "-1"), (1, "abc"), (1, "NaN"), (1, "Infinity"), (1, "-Infinity"),
])
def test_key_type_validation(services, hours, price):
    with pytest.raises(ValidationError):
        services.catalog.create_key_type("Bad", hours=hours, price=price)


def test_bind_rejects_duplicates(services, catalog_setup):
    software, monthly = catalog_setup
    with pytest.raises(InvalidState):
        services.catalog.bind(software.id, monthly.id)


def test_bind_requires_existing_entities(services, catalog_setup):
    software, _ = catalog_setup
    with pytest.raises(NotFound):
        services.catalog.bind(software.id, 999)
    with pytest.raises(NotFound):
        services.catalog.bind(999, 1)


def test_unbind_missing_binding_is_not_found(services, catalog_setup):
    software, monthly = catalog_setup
    services.catalog.unbind(software.id, monthly.id)
    assert SoftwareKeyType.query.count() == 0
    with pytest.raises(NotFound):
        services.catalog.unbind(software.id, monthly.id)


def test_key_types_for_software(services, catalog_setup):
    software, monthly = catalog_setup
    assert [kt.id for kt in services.catalog.key_types_for(software.id)] == [monthly.id]


def test_unbound_pair_cannot_be_minted(services, catalog_setup):
    software, _ = catalog_setup
    with pytest.raises(AuthorizationError):
        services.keys.mint(software.id, 1, 1, Creator.admin(1))


def test_inactive_binding_blocks_minting(services, catalog_setup):
    software, monthly = catalog_setup
    binding = SoftwareKeyType.query.filter_by(software_id=software.id).first()
    binding.is_active = False
    from extensions import db
    db.session.commit()
    with pytest.raises(AuthorizationError):
        services.catalog.require_binding(software.id, monthly.id)


def test_delete_key_type_with_keys_is_rejected(services, catalog_setup):
    software, monthly = catalog_setup
    services.keys.mint(software.id, monthly.id, 2, Creator.admin(1))
    with pytest.raises(IntegrityViolation):
        services.catalog.delete_key_type(monthly.id)
    assert services.catalog.get_key_type(monthly.id)


def test_delete_unused_key_type_removes_bindings(services, catalog_setup):
    software, monthly = catalog_setup
    services.catalog.delete_key_type(monthly.id)
    with pytest.raises(NotFound):
        services.catalog.get_key_type(monthly.id)
    assert SoftwareKeyType.query.count() == 0


def test_delete_software_with_keys_is_rejected(services, catalog_setup):
    software, monthly = catalog_setup
    services.keys.mint(software.id, monthly.id, 1, Creator.admin(1))
    with pytest.raises(IntegrityViolation):
        services.catalog.delete_software(software.id)


def test_update_key_type_does_not_touch_minted_keys(services, catalog_setup):
    software, monthly = catalog_setup
    result = services.keys.mint(software.id, monthly.id, 1, Creator.admin(1))
    services.catalog.update_key_type(monthly.id, name="Monthly Plus", hours=1000, price="19.99")
    key = services.keys.get(result.keys[0].id)
    assert key.key_type_name == "Monthly"
    assert key.hours == 720
    assert key.price == Decimal("9.99")


def test_activate_deactivate_toggles(services, catalog_setup):
    software, monthly = catalog_setup
    assert services.catalog.set_software_active(software.id, False).is_active is False
    assert services.catalog.set_key_type_active(monthly.id, False).is_active is False
    assert services.catalog.set_key_type_active(monthly.id, True).is_active is True


def test_list_software_paginates_newest_first(services):
    for name in ("A", "B", "C"):
        services.catalog.create_software(name)
    page = services.catalog.list_software(page=1, page_size=2)
    assert page.total == 3
    assert [s.name for s in page.items] == ["C", "B"]
    assert page.pages == 2


def test_assign_product_upserts(services, catalog_setup, make_salesperson):
    software, monthly = catalog_setup
    seller = make_salesperson(commission_rate="0.2")
    product = services.catalog.assign_product(seller.id, software.id, monthly.id, key_gen_limit=10)
    assert product.commission_rate == Decimal("0.2")
    assert product.key_gen_limit == 10

    services.catalog.revoke_product(seller.id, product.id)
    again = services.catalog.assign_product(seller.id, software.id, monthly.id,
                                            commission_rate="0.3", key_gen_limit=0)
    assert again.id == product.id
    assert again.is_active is True
    assert again.commission_rate == Decimal("0.3")
    # a zero limit leaves the existing limit untouched
    assert again.key_gen_limit == 10


def test_assign_product_requires_binding(services, catalog_setup, make_salesperson):
    software, _ = catalog_setup
    seller = make_salesperson()
    with pytest.raises(NotFound):
        services.catalog.assign_product(seller.id, software.id, 1)
