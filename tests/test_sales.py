from decimal import Decimal

import pytest

from licensing.errors import InvalidState, NotFound
from licensing.key_store import SaleDetails
from models import SalespersonAgentCommission


@pytest.fixture
def pair(services, catalog_setup, make_salesperson, link):
    software, monthly = catalog_setup
    upline = make_salesperson("upline")
    seller = make_salesperson("seller", commission_rate="0.2")
    link(upline, seller)
    services.catalog.assign_product(seller.id, software.id, monthly.id)
    return upline, seller


def generate(services, catalog_setup, seller, count, **details):
    software, monthly = catalog_setup
    return services.sales.generate_keys(seller.id, software.id, monthly.id, count,
                                        SaleDetails(**details))


def test_generate_keys_returns_keys_sale_and_commissions(services, catalog_setup, pair):
    upline, seller = pair
    result = generate(services, catalog_setup, seller, 3, customer_phone="0700123456")

    payload = result.to_dict()
    assert len(payload["keys"]) == 3
    assert payload["sale"]["key_count"] == 3
    assert payload["sale"]["customer_phone"] == "0700123456"
    assert [row["agent_id"] for row in payload["agent_commissions"]] == [upline.id]
    assert payload["cascade_error"] is None


def test_sales_for_paginates_newest_first(services, catalog_setup, pair):
    _, seller = pair
    for count in (1, 2, 3):
        generate(services, catalog_setup, seller, count)

    page = services.sales.sales_for(seller.id, page=1, page_size=2)
    assert page.total == 3
    assert [sale.key_count for sale in page.items] == [3, 2]


def test_commission_stats(services, catalog_setup, pair):
    upline, seller = pair
    generate(services, catalog_setup, seller, 1)
    generate(services, catalog_setup, seller, 2)

    stats = services.sales.commission_stats(seller.id)
    assert stats["sale_count"] == 2
    assert stats["total_sales"] == pytest.approx(29.97)
    assert stats["period_sales"] == pytest.approx(29.97)
    assert stats["pending_commission"] == pytest.approx(5.994)
    assert stats["settled_commission"] == 0

    upline_stats = services.sales.commission_stats(upline.id)
    assert upline_stats["agent_commission"] == pytest.approx(2.997)


def test_commission_stats_unknown_salesperson(services):
    with pytest.raises(NotFound):
        services.sales.commission_stats(999)


def test_settle_sales_marks_pending_only(services, catalog_setup, pair):
    _, seller = pair
    first = generate(services, catalog_setup, seller, 1).sale
    generate(services, catalog_setup, seller, 1)
    services.sales.cancel_sale(first.id)

    assert services.sales.settle_sales(seller.id) == 1
    assert services.sales.settle_sales(seller.id) == 0
    stats = services.sales.commission_stats(seller.id)
    assert stats["settled_commission"] == pytest.approx(1.998)
    assert stats["cancelled_commission"] == pytest.approx(1.998)


def test_cancel_sale_reverses_every_total(services, catalog_setup, pair):
    upline, seller = pair
    result = generate(services, catalog_setup, seller, 5)

    cancelled = services.sales.cancel_sale(result.sale.id)

    assert cancelled.status == "cancelled"
    assert services.accounts.get_salesperson(seller.id).total_sales == Decimal("0")
    assert services.accounts.get_salesperson(seller.id).total_commission == Decimal("0")
    assert services.accounts.get_salesperson(upline.id).total_commission == Decimal("0")
    row = SalespersonAgentCommission.query.filter_by(sale_id=result.sale.id).one()
    assert row.status == "cancelled"

    with pytest.raises(InvalidState):
        services.sales.cancel_sale(result.sale.id)


def test_cancel_leaves_settled_agent_commission_alone(services, catalog_setup, pair):
    upline, seller = pair
    result = generate(services, catalog_setup, seller, 1)
    services.commission.settle(upline.id)

    services.sales.cancel_sale(result.sale.id)

    row = SalespersonAgentCommission.query.filter_by(sale_id=result.sale.id).one()
    assert row.status == "settled"
    assert services.accounts.get_salesperson(upline.id).total_commission == Decimal("0.999")


def test_cancel_unknown_sale(services):
    with pytest.raises(NotFound):
        services.sales.cancel_sale(404)
