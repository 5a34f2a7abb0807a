"""
Salesperson-facing sales flow.

Generating keys is two write phases: the mint transaction (keys, quota,
sale, seller totals) and then the commission cascade. A cascade failure
is reported to the caller but never undoes the committed sale.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select

from extensions import db, unit_of_work, conditional_update, increment
from licensing.errors import InvalidState, LicensingError, NotFound
from licensing.key_store import Creator, SaleDetails
from models import (
    Key, Salesperson, SalespersonAgentCommission, SalespersonSale, SettlementStatus,
)
from utils import quantize_decimal, utc_now

logger = logging.getLogger(__name__)


@dataclass
class GenerateResult:
    keys: List[Key]
    sale: SalespersonSale
    commissions: List[SalespersonAgentCommission] = field(default_factory=list)
    cascade_error: Optional[str] = None

    def to_dict(self):
        return {
            "keys": [key.to_dict() for key in self.keys],
            "sale": self.sale.to_dict(),
            "agent_commissions": [row.to_dict() for row in self.commissions],
            "cascade_error": self.cascade_error,
        }


class SalesDesk:

    def __init__(self, key_store, cascade, clock=utc_now):
        self.key_store = key_store
        self.cascade = cascade
        self.clock = clock

    def generate_keys(self, salesperson_id, software_id, key_type_id, count,
                      details: Optional[SaleDetails] = None) -> GenerateResult:
        minted = self.key_store.mint(software_id, key_type_id, count,
                                     Creator.salesperson(salesperson_id), details)
        result = GenerateResult(keys=minted.keys, sale=minted.sale)
        try:
            result.commissions = self.cascade.cascade(minted.sale)
        except LicensingError as exc:
            logger.error("Commission cascade failed for sale %s: %s", minted.sale.id, exc.message)
            result.cascade_error = exc.message
        return result

    def retry_cascade(self, sale_id):
        """Re-run the cascade for a sale whose first attempt failed."""
        if SalespersonAgentCommission.query.filter_by(sale_id=sale_id).first():
            raise InvalidState("Commission already distributed for this sale")
        return self.cascade.cascade(sale_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _sales_stmt(self, salesperson_id, status=None, start=None, end=None):
        stmt = select(SalespersonSale).where(SalespersonSale.salesperson_id == salesperson_id)
        if status:
            stmt = stmt.where(SalespersonSale.status == status)
        if start:
            stmt = stmt.where(SalespersonSale.created_at >= start)
        if end:
            stmt = stmt.where(SalespersonSale.created_at <= end)
        return stmt

    def sales_for(self, salesperson_id, status=None, start=None, end=None,
                  page=1, page_size=10, max_page_size=100):
        stmt = self._sales_stmt(salesperson_id, status, start, end) \
            .order_by(SalespersonSale.id.desc())
        return db.paginate(stmt, page=page, per_page=page_size,
                           max_per_page=max_page_size, error_out=False)

    def commission_stats(self, salesperson_id, start=None, end=None) -> dict:
        salesperson = db.session.get(Salesperson, salesperson_id)
        if salesperson is None:
            raise NotFound(f"Salesperson {salesperson_id} not found")

        base = self._sales_stmt(salesperson_id, start=start, end=end).subquery()
        stmt = (
            select(base.c.status, func.sum(base.c.commission_amount),
                   func.sum(base.c.sale_amount), func.count())
            .group_by(base.c.status)
        )
        by_status = {status.value: Decimal("0") for status in SettlementStatus}
        period_sales = Decimal("0")
        sale_count = 0
        for status, commission, amount, count in db.session.execute(stmt):
            by_status[status] = quantize_decimal(commission or 0)
            if status != SettlementStatus.CANCELLED.value:
                period_sales += Decimal(str(amount or 0))
                sale_count += count

        agent_total = db.session.scalar(
            select(func.coalesce(func.sum(SalespersonAgentCommission.commission_amount), 0))
            .where(SalespersonAgentCommission.agent_id == salesperson_id,
                   SalespersonAgentCommission.status != SettlementStatus.CANCELLED.value)
        )

        return {
            "total_sales": float(salesperson.total_sales or 0),
            "total_commission": float(salesperson.total_commission or 0),
            "period_sales": float(period_sales),
            "sale_count": sale_count,
            "pending_commission": float(by_status[SettlementStatus.PENDING.value]),
            "settled_commission": float(by_status[SettlementStatus.SETTLED.value]),
            "cancelled_commission": float(by_status[SettlementStatus.CANCELLED.value]),
            "agent_commission": float(agent_total or 0),
        }

    # ------------------------------------------------------------------
    # Admin actions on sales
    # ------------------------------------------------------------------
    def settle_sales(self, salesperson_id) -> int:
        now = self.clock()
        with unit_of_work():
            if db.session.get(Salesperson, salesperson_id) is None:
                raise NotFound(f"Salesperson {salesperson_id} not found")
            settled = conditional_update(
                SalespersonSale,
                SalespersonSale.salesperson_id == salesperson_id,
                SalespersonSale.status == SettlementStatus.PENDING.value,
                status=SettlementStatus.SETTLED.value,
                settled_at=now,
            )
        logger.info("Settled %d sales for salesperson %s", settled, salesperson_id)
        return settled

    def cancel_sale(self, sale_id) -> SalespersonSale:
        """
        Cancel a pending sale: seller totals and every pending agent
        commission are reversed in the same transaction.
        """
        with unit_of_work() as session:
            sale = session.get(SalespersonSale, sale_id)
            if sale is None:
                raise NotFound(f"Sale {sale_id} not found")
            if sale.status != SettlementStatus.PENDING.value:
                raise InvalidState(f"Sale is already {sale.status}")
            updated = conditional_update(
                SalespersonSale,
                SalespersonSale.id == sale.id,
                SalespersonSale.status == SettlementStatus.PENDING.value,
                status=SettlementStatus.CANCELLED.value,
            )
            if updated != 1:
                raise InvalidState("Sale changed while cancelling, please retry")
            increment(
                Salesperson, sale.salesperson_id,
                total_sales=-Decimal(sale.sale_amount),
                total_commission=-Decimal(sale.commission_amount),
            )
            reversed_rows = self.cascade.reverse(sale.id)
            session.expire(sale)
        logger.info("Sale %s cancelled, %d agent commissions reversed", sale_id, reversed_rows)
        return sale
