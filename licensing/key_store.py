"""
Key lifecycle: mint, activate, void, and the read-side queries.

State machine::

    unused --activate--> used
    {unused, used} --void--> void      (void is terminal)

Transitions are written as guarded UPDATEs so two concurrent requests
for the same key cannot both succeed.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_, select

from extensions import db, unit_of_work, conditional_update, increment
from licensing.errors import (
    AuthorizationError, IntegrityViolation, InvalidState, Mismatch, NotFound, ValidationError,
)
from models import (
    CreatorType, Key, KeyStatus, Salesperson, SalespersonProduct, SalespersonSale, Software,
)
from utils import quantize_decimal, utc_now

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


@dataclass(frozen=True)
class Creator:
    """Who is minting: an admin, or a salesperson acting for themselves."""
    kind: CreatorType
    id: int

    @classmethod
    def admin(cls, admin_id):
        return cls(CreatorType.ADMIN, admin_id)

    @classmethod
    def salesperson(cls, salesperson_id):
        return cls(CreatorType.SALESPERSON, salesperson_id)

    @property
    def is_salesperson(self):
        return self.kind is CreatorType.SALESPERSON


@dataclass
class SaleDetails:
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class MintResult:
    keys: List[Key]
    sale: Optional[SalespersonSale] = None


@dataclass
class KeyFilter:
    status: Optional[str] = None
    type_id: Optional[int] = None
    software_id: Optional[int] = None
    creator_id: Optional[int] = None
    creator_type: Optional[str] = None
    salesperson_id: Optional[int] = None
    activator_id: Optional[int] = None
    code: Optional[str] = None
    key_code: Optional[str] = None
    start_time: Optional[object] = None
    end_time: Optional[object] = None

    def apply(self, stmt):
        if self.status:
            if self.status not in {s.value for s in KeyStatus}:
                raise ValidationError(f"Unknown key status '{self.status}'")
            stmt = stmt.where(Key.status == self.status)
        if self.type_id:
            stmt = stmt.where(Key.key_type_id == self.type_id)
        if self.software_id:
            stmt = stmt.where(Key.software_id == self.software_id)
        if self.creator_id:
            stmt = stmt.where(Key.creator_id == self.creator_id)
        if self.creator_type:
            stmt = stmt.where(Key.creator_type == self.creator_type)
        if self.salesperson_id:
            stmt = stmt.where(Key.salesperson_id == self.salesperson_id)
        if self.activator_id:
            stmt = stmt.where(Key.user_id == self.activator_id)
        if self.code:
            stmt = stmt.where(Key.code.contains(self.code))
        if self.key_code:
            stmt = stmt.where(Key.key_code.contains(self.key_code))
        if self.start_time:
            stmt = stmt.where(Key.created_at >= self.start_time)
        if self.end_time:
            stmt = stmt.where(Key.created_at <= self.end_time)
        return stmt


class KeyStore:

    def __init__(self, catalog, code_generator, clock=utc_now, max_mint_count=1000):
        self.catalog = catalog
        self.codes = code_generator
        self.clock = clock
        self.max_mint_count = max_mint_count

    # ------------------------------------------------------------------
    # Mint
    # ------------------------------------------------------------------
    def _check_count(self, count):
        try:
            count = int(count)
        except (TypeError, ValueError):
            raise ValidationError("count must be an integer")
        if count < 1 or count > self.max_mint_count:
            raise ValidationError(f"count must be between 1 and {self.max_mint_count}")
        return count

    def _unique_codes(self, count, make_code, column):
        """``count`` fresh codes, unique in the batch and against stored keys."""
        codes = set()
        for _ in range(MAX_CODE_ATTEMPTS):
            while len(codes) < count:
                codes.add(make_code())
            taken = set(db.session.scalars(select(column).where(column.in_(list(codes)))))
            if not taken:
                return list(codes)
            logger.warning("Regenerating %d colliding codes", len(taken))
            codes -= taken
        raise IntegrityViolation("Could not generate unique key codes")

    def _code_factories(self, creator):
        if creator.is_salesperson:
            return self.codes.salesperson_sale_code, self.codes.salesperson_key_code
        return self.codes.key_code, self.codes.activation_code

    def mint(self, software_id, key_type_id, count, creator: Creator,
             sale_details: Optional[SaleDetails] = None) -> MintResult:
        """
        Create ``count`` unused keys in one transaction.

        For a salesperson the same transaction also checks and consumes the
        product quota, records the sale and updates the salesperson totals.
        """
        count = self._check_count(count)

        with unit_of_work() as session:
            key_type = self.catalog.get_key_type(key_type_id)
            if not key_type.is_active:
                raise InvalidState("Key type is not active")
            software = self.catalog.get_software(software_id)
            if not software.is_active:
                raise InvalidState("Software is not active")
            self.catalog.require_binding(software.id, key_type.id)

            product = None
            if creator.is_salesperson:
                product = self._consume_quota(creator.id, software.id, key_type.id, count)

            sale = None
            if product is not None:
                sale = self._record_sale(session, creator.id, product, key_type, count,
                                         sale_details or SaleDetails())

            make_code, make_key_code = self._code_factories(creator)
            codes = self._unique_codes(count, make_code, Key.code)
            key_codes = self._unique_codes(count, make_key_code, Key.key_code)

            keys = [
                Key(
                    code=code,
                    key_code=key_code,
                    key_type_id=key_type.id,
                    key_type_name=key_type.name,
                    hours=key_type.hours,
                    price=key_type.price,
                    software_id=software.id,
                    software_name=software.name,
                    status=KeyStatus.UNUSED.value,
                    creator_id=creator.id,
                    creator_type=creator.kind.value,
                    salesperson_id=creator.id if creator.is_salesperson else None,
                    sale_id=sale.id if sale is not None else None,
                )
                for code, key_code in zip(codes, key_codes)
            ]
            session.add_all(keys)

        logger.info("Minted %d keys software=%s key_type=%s creator=%s:%s",
                    count, software_id, key_type_id, creator.kind.value, creator.id)
        return MintResult(keys=keys, sale=sale)

    def _consume_quota(self, salesperson_id, software_id, key_type_id, count):
        salesperson = db.session.get(Salesperson, salesperson_id)
        if salesperson is None:
            raise NotFound(f"Salesperson {salesperson_id} not found")
        if not salesperson.is_active:
            raise AuthorizationError("Salesperson account is not active")
        product = self.catalog.active_product(salesperson_id, software_id, key_type_id)
        if product.key_gen_limit > 0 and product.keys_generated + count > product.key_gen_limit:
            raise AuthorizationError(
                "Key generation quota exceeded",
                {"limit": product.key_gen_limit, "generated": product.keys_generated},
            )

        updated = conditional_update(
            SalespersonProduct,
            SalespersonProduct.id == product.id,
            or_(
                SalespersonProduct.key_gen_limit == 0,
                SalespersonProduct.keys_generated + count <= SalespersonProduct.key_gen_limit,
            ),
            keys_generated=SalespersonProduct.keys_generated + count,
        )
        if updated != 1:
            # another request consumed the quota first
            raise IntegrityViolation("Key generation quota exceeded")
        db.session.expire(product, ["keys_generated"])
        return product

    def _record_sale(self, session, salesperson_id, product, key_type, count, details):
        sale_amount = quantize_decimal(Decimal(key_type.price) * count, '0.01')
        rate = Decimal(product.commission_rate)
        commission = quantize_decimal(sale_amount * rate)

        sale = SalespersonSale(
            salesperson_id=salesperson_id,
            software_id=product.software_id,
            key_type_id=product.key_type_id,
            sale_code=self.codes.salesperson_sale_code(),
            key_count=count,
            sale_amount=sale_amount,
            commission_rate=rate,
            commission_amount=commission,
            customer_name=details.customer_name,
            customer_phone=details.customer_phone,
            customer_email=details.customer_email,
            notes=details.notes,
        )
        session.add(sale)
        session.flush()

        increment(Salesperson, salesperson_id, total_sales=sale_amount, total_commission=commission)
        return sale

    # ------------------------------------------------------------------
    # Activation / void
    # ------------------------------------------------------------------
    def activate(self, code, key_code, software_id, device_info=None, activator_id=None) -> Key:
        if not code or not key_code:
            raise ValidationError("code and key_code are required")
        try:
            software_id = int(software_id)
        except (TypeError, ValueError):
            raise ValidationError("software_id must be an integer")

        now = self.clock()
        with unit_of_work() as session:
            key = Key.query.filter_by(code=code, key_code=key_code).first()
            if key is None:
                raise NotFound("Key not found")
            if key.status != KeyStatus.UNUSED.value:
                raise InvalidState(f"Key is already {key.status}")
            if key.is_blacklisted:
                raise InvalidState("Key is blacklisted")
            if key.software_id != software_id:
                raise Mismatch("Key does not belong to this software")
            software = session.get(Software, key.software_id)
            if software is None or not software.is_active:
                raise Mismatch("Software is not active")

            updated = conditional_update(
                Key,
                Key.id == key.id,
                Key.status == KeyStatus.UNUSED.value,
                status=KeyStatus.USED.value,
                used_at=now,
                activated_at=now,
                expired_at=now + timedelta(hours=key.hours),
                device_info=device_info,
                user_id=activator_id,
            )
            if updated != 1:
                raise InvalidState("Key was activated by another request")
            session.expire(key)

        logger.info("Key %s activated for software %s by user %s", key.id, software_id, activator_id)
        return key

    def void(self, key_id) -> Key:
        with unit_of_work() as session:
            key = self.get(key_id)
            if key.status == KeyStatus.VOID.value:
                raise InvalidState("Key is already void")
            updated = conditional_update(
                Key,
                Key.id == key.id,
                Key.status != KeyStatus.VOID.value,
                status=KeyStatus.VOID.value,
            )
            if updated != 1:
                raise InvalidState("Key is already void")
            session.expire(key)
        logger.info("Key %s voided", key_id)
        return key

    def set_blacklisted(self, key_id, blacklisted: bool) -> Key:
        with unit_of_work():
            key = self.get(key_id)
            key.is_blacklisted = bool(blacklisted)
        logger.info("Key %s blacklist=%s", key_id, blacklisted)
        return key

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, key_id, scope_salesperson_id=None) -> Key:
        key = db.session.get(Key, key_id)
        if key is None:
            raise NotFound(f"Key {key_id} not found")
        if scope_salesperson_id is not None and key.salesperson_id != scope_salesperson_id:
            raise AuthorizationError("Key does not belong to you")
        return key

    def _filtered(self, filters: Optional[KeyFilter], scope_salesperson_id=None):
        stmt = select(Key)
        filters = filters or KeyFilter()
        stmt = filters.apply(stmt)
        if scope_salesperson_id is not None:
            stmt = stmt.where(Key.salesperson_id == scope_salesperson_id)
        return stmt.order_by(Key.id.desc())

    def list(self, filters: Optional[KeyFilter] = None, page=1, page_size=10,
             max_page_size=100, scope_salesperson_id=None):
        page = page if page and page > 0 else 1
        page_size = page_size if page_size and page_size > 0 else 10
        stmt = self._filtered(filters, scope_salesperson_id)
        return db.paginate(stmt, page=page, per_page=page_size,
                           max_per_page=max_page_size, error_out=False)

    def export(self, filters: Optional[KeyFilter] = None, scope_salesperson_id=None) -> List[Key]:
        return list(db.session.scalars(self._filtered(filters, scope_salesperson_id)))

    def status(self, key_id=None, code=None, key_code=None, software_id=None) -> List[Key]:
        """Public lookup; at least one selector is required."""
        if not any((key_id, code, key_code, software_id)):
            raise ValidationError("Provide at least one of id, code, key_code or software_id")
        stmt = select(Key)
        if key_id:
            stmt = stmt.where(Key.id == key_id)
        if code:
            stmt = stmt.where(Key.code == code)
        if key_code:
            stmt = stmt.where(Key.key_code == key_code)
        if software_id:
            stmt = stmt.where(Key.software_id == software_id)
        keys = list(db.session.scalars(stmt.order_by(Key.id)))
        if not keys:
            raise NotFound("No matching keys")
        return keys
