"""
Commission cascade up the agent tree, plus agent-side commission reads
and settlement batches.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select

from extensions import db, unit_of_work, conditional_update, increment
from licensing.code_generator import to_base36
from licensing.errors import InvalidState, NotFound
from models import (
    CommissionSettlement, Salesperson, SalespersonAgentCommission, SalespersonSale,
    SettlementStatus,
)
from utils import quantize_decimal, utc_now

logger = logging.getLogger(__name__)

MIN_COMMISSION_AMOUNT = Decimal("0.01")


def cascade_rate(parent_rate, current_level, parent_level) -> Decimal:
    """
    Rate paid to an ancestor at ``parent_level`` when the walk stands at
    ``current_level``. A direct upline gets its rate verbatim; each skipped
    level halves it.
    """
    parent_rate = Decimal(parent_rate)
    if current_level - 1 == parent_level:
        return parent_rate
    level_diff = current_level - parent_level - 1
    if level_diff <= 0:
        return parent_rate
    return parent_rate / (Decimal(2) ** level_diff)


class CommissionCascade:

    def __init__(self, code_generator, clock=utc_now, max_level=5,
                 min_amount=MIN_COMMISSION_AMOUNT):
        self.codes = code_generator
        self.clock = clock
        self.max_level = max_level
        self.min_amount = Decimal(min_amount)

    def _sale(self, sale_or_id) -> SalespersonSale:
        if isinstance(sale_or_id, SalespersonSale):
            return sale_or_id
        sale = db.session.get(SalespersonSale, sale_or_id)
        if sale is None:
            raise NotFound(f"Sale {sale_or_id} not found")
        return sale

    def cascade(self, sale_or_id):
        """
        Distribute one sale's commission to the seller's ancestors.

        All commission rows and total_commission increments commit together.
        Returns the created rows; empty when the seller has no upline.
        """
        sale = self._sale(sale_or_id)
        seller = db.session.get(Salesperson, sale.salesperson_id)
        if seller is None:
            raise NotFound(f"Salesperson {sale.salesperson_id} not found")
        if seller.parent_id is None:
            return []

        sale_amount = Decimal(sale.sale_amount)
        created = []
        with unit_of_work() as session:
            current_id = seller.id
            parent_id = seller.parent_id
            current_level = seller.level
            visited = {seller.id}
            hops = 0

            while parent_id is not None and hops < self.max_level:
                if parent_id in visited:
                    logger.error("Cycle detected in agent tree at salesperson %s", parent_id)
                    break
                visited.add(parent_id)

                parent = session.get(Salesperson, parent_id)
                if parent is None:
                    raise NotFound(f"Upline salesperson {parent_id} not found")

                rate = cascade_rate(parent.parent_commission_rate, current_level, parent.level)
                amount = sale_amount * rate
                if amount < self.min_amount:
                    break
                amount = quantize_decimal(amount)

                commission = SalespersonAgentCommission(
                    sale_id=sale.id,
                    salesperson_id=current_id,
                    agent_id=parent.id,
                    agent_level=parent.level,
                    original_amount=sale_amount,
                    commission_rate=rate,
                    commission_amount=amount,
                    status=SettlementStatus.PENDING.value,
                )
                session.add(commission)
                increment(Salesperson, parent.id, total_commission=amount)
                created.append(commission)

                current_id = parent.id
                parent_id = parent.parent_id
                current_level = parent.level
                hops += 1

        logger.info("Sale %s cascaded %d agent commissions", sale.id, len(created))
        return created

    def reverse(self, sale_id) -> int:
        """
        Cancel a sale's pending agent commissions and take the amounts back
        off each agent's total. Runs inside the caller's transaction.
        """
        rows = SalespersonAgentCommission.query.filter_by(
            sale_id=sale_id, status=SettlementStatus.PENDING.value
        ).all()
        for row in rows:
            updated = conditional_update(
                SalespersonAgentCommission,
                SalespersonAgentCommission.id == row.id,
                SalespersonAgentCommission.status == SettlementStatus.PENDING.value,
                status=SettlementStatus.CANCELLED.value,
            )
            if updated == 1:
                increment(Salesperson, row.agent_id, total_commission=-Decimal(row.commission_amount))
            db.session.expire(row)
        return len(rows)

    # ------------------------------------------------------------------
    # Agent-side reads
    # ------------------------------------------------------------------
    def commissions_for_agent(self, agent_id, status: Optional[str] = None):
        query = SalespersonAgentCommission.query.filter_by(agent_id=agent_id)
        if status:
            query = query.filter_by(status=status)
        rows = query.order_by(SalespersonAgentCommission.id.desc()).all()
        total = sum((Decimal(row.commission_amount) for row in rows), Decimal("0"))
        return rows, total

    def totals_by_status(self, agent_id) -> dict:
        stmt = (
            select(SalespersonAgentCommission.status, func.sum(SalespersonAgentCommission.commission_amount))
            .where(SalespersonAgentCommission.agent_id == agent_id)
            .group_by(SalespersonAgentCommission.status)
        )
        totals = {status.value: Decimal("0") for status in SettlementStatus}
        for status, amount in db.session.execute(stmt):
            totals[status] = quantize_decimal(amount or 0)
        return totals

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------
    def _settlement_no(self, now):
        return f"STL{now:%Y%m%d%H%M%S}{to_base36(self.codes.next_sequence())}{self.codes.random_code(4)}"

    def settle(self, agent_id, approver_id=None, notes=None) -> CommissionSettlement:
        """Move every pending commission of one agent into a paid batch."""
        now = self.clock()
        with unit_of_work() as session:
            if session.get(Salesperson, agent_id) is None:
                raise NotFound(f"Salesperson {agent_id} not found")
            pending = SalespersonAgentCommission.query.filter_by(
                agent_id=agent_id, status=SettlementStatus.PENDING.value
            ).all()
            if not pending:
                raise InvalidState("No pending commissions to settle")

            total = sum((Decimal(row.commission_amount) for row in pending), Decimal("0"))
            settlement = CommissionSettlement(
                settlement_no=self._settlement_no(now),
                agent_id=agent_id,
                commission_count=len(pending),
                total_amount=quantize_decimal(total),
                status=SettlementStatus.SETTLED.value,
                approver_id=approver_id,
                paid_at=now,
                notes=notes,
            )
            session.add(settlement)
            session.flush()

            ids = [row.id for row in pending]
            updated = conditional_update(
                SalespersonAgentCommission,
                SalespersonAgentCommission.id.in_(ids),
                SalespersonAgentCommission.status == SettlementStatus.PENDING.value,
                status=SettlementStatus.SETTLED.value,
                settlement_id=settlement.id,
                settled_at=now,
            )
            if updated != len(ids):
                raise InvalidState("Commissions changed while settling, please retry")
            for row in pending:
                session.expire(row)

        logger.info("Settlement %s: %d commissions, total %s for agent %s",
                    settlement.settlement_no, len(ids), total, agent_id)
        return settlement

    def settlements_for(self, agent_id):
        return CommissionSettlement.query.filter_by(agent_id=agent_id) \
            .order_by(CommissionSettlement.id.desc()).all()
