# models.py: Flask-SQLAlchemy models for keys, catalog and the agent tree
from decimal import Decimal
import enum

from flask_login import UserMixin
from sqlalchemy import UniqueConstraint, Index, text
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from utils import as_utc, isoformat


# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class KeyStatus(enum.Enum):
    UNUSED = "unused"
    USED = "used"
    VOID = "void"


class CreatorType(enum.Enum):
    ADMIN = "admin"
    SALESPERSON = "salesperson"


class SalespersonStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class SettlementStatus(enum.Enum):
    """Shared by sales, agent commissions and settlement batches."""
    PENDING = "pending"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class InvitationStatus(enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


def _money(value):
    return float(value) if value is not None else 0.0


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime(timezone=True), default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=db.func.now(),
                           onupdate=db.func.now())


# ===========================================================
# ADMIN
# ===========================================================

class Admin(db.Model, BaseMixin):
    __tablename__ = 'admins'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "is_active": self.is_active,
            "last_login_at": isoformat(self.last_login_at),
        }


# ===========================================================
# CATALOG
# ===========================================================

class Software(db.Model, BaseMixin):
    __tablename__ = 'software'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    version = db.Column(db.String(50), nullable=True)
    announcement = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    bindings = db.relationship('SoftwareKeyType', back_populates='software',
                               cascade="all,delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "announcement": self.announcement,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
        }


class KeyType(db.Model, BaseMixin):
    """Pricing / validity template for keys."""
    __tablename__ = 'key_types'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    hours = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    creator_id = db.Column(db.Integer, nullable=True)

    bindings = db.relationship('SoftwareKeyType', back_populates='key_type',
                               cascade="all,delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "hours": self.hours,
            "price": _money(self.price),
            "is_active": self.is_active,
            "creator_id": self.creator_id,
            "created_at": isoformat(self.created_at),
        }


class SoftwareKeyType(db.Model, BaseMixin):
    """Binding that allows minting keys of a key type for a software."""
    __tablename__ = 'software_key_types'
    __table_args__ = (
        UniqueConstraint('software_id', 'key_type_id', name='uq_software_key_type'),
    )

    id = db.Column(db.Integer, primary_key=True)
    software_id = db.Column(db.Integer, db.ForeignKey('software.id'), nullable=False)
    key_type_id = db.Column(db.Integer, db.ForeignKey('key_types.id'), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    creator_id = db.Column(db.Integer, nullable=True)

    software = db.relationship('Software', back_populates='bindings')
    key_type = db.relationship('KeyType', back_populates='bindings')

    def to_dict(self):
        return {
            "id": self.id,
            "software_id": self.software_id,
            "key_type_id": self.key_type_id,
            "is_active": self.is_active,
        }


# ===========================================================
# KEYS
# ===========================================================

class Key(db.Model, BaseMixin):
    """One redeemable license unit."""
    __tablename__ = 'keys'
    __table_args__ = (
        Index('idx_keys_salesperson', 'salesperson_id'),
        Index('idx_keys_status', 'status'),
        Index('idx_keys_software_type', 'software_id', 'key_type_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False)
    key_code = db.Column(db.String(32), unique=True, nullable=False)

    key_type_id = db.Column(db.Integer, db.ForeignKey('key_types.id'), nullable=False)
    key_type_name = db.Column(db.String(100), nullable=False)
    hours = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(18, 2), nullable=False)

    software_id = db.Column(db.Integer, db.ForeignKey('software.id'), nullable=False)
    software_name = db.Column(db.String(100), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=KeyStatus.UNUSED.value)
    creator_id = db.Column(db.Integer, nullable=True)
    creator_type = db.Column(db.String(20), nullable=False, default=CreatorType.ADMIN.value)
    salesperson_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('salesperson_sales.id'), nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    device_info = db.Column(db.Text, nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_blacklisted = db.Column(db.Boolean, default=False, nullable=False)

    def is_valid(self, now):
        """Used, not blacklisted and not yet expired."""
        if self.status != KeyStatus.USED.value or self.is_blacklisted:
            return False
        return self.expired_at is not None and as_utc(self.expired_at) > now

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "key_code": self.key_code,
            "key_type_id": self.key_type_id,
            "key_type_name": self.key_type_name,
            "hours": self.hours,
            "price": _money(self.price),
            "software_id": self.software_id,
            "software_name": self.software_name,
            "status": self.status,
            "creator_id": self.creator_id,
            "creator_type": self.creator_type,
            "salesperson_id": self.salesperson_id,
            "user_id": self.user_id,
            "device_info": self.device_info,
            "used_at": isoformat(self.used_at),
            "activated_at": isoformat(self.activated_at),
            "expired_at": isoformat(self.expired_at),
            "is_blacklisted": self.is_blacklisted,
            "created_at": isoformat(self.created_at),
        }


# ===========================================================
# SALESPERSONS / AGENT TREE
# ===========================================================

class Salesperson(db.Model, UserMixin, BaseMixin):
    """A reseller node. parent_id/level/children_count describe the agent forest."""
    __tablename__ = 'salespersons'
    __table_args__ = (
        Index('idx_salesperson_parent', 'parent_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    avatar = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=SalespersonStatus.ACTIVE.value)

    commission_rate = db.Column(db.Numeric(8, 4), nullable=False, default=Decimal("0"))
    total_sales = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0"),
                            server_default=text("0"))
    total_commission = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"),
                                 server_default=text("0"))
    creator_id = db.Column(db.Integer, nullable=True)

    parent_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=True)
    level = db.Column(db.Integer, nullable=False, default=0)
    children_count = db.Column(db.Integer, nullable=False, default=0)
    agent_code = db.Column(db.String(20), unique=True, nullable=True)
    parent_commission_rate = db.Column(db.Numeric(8, 4), nullable=False, default=Decimal("0.1"))

    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    parent = db.relationship('Salesperson', remote_side=[id], backref='children')

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self):
        # flask-login refuses sessions for inactive users
        return self.status == SalespersonStatus.ACTIVE.value

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "avatar": self.avatar,
            "status": self.status,
            "commission_rate": _money(self.commission_rate),
            "total_sales": _money(self.total_sales),
            "total_commission": _money(self.total_commission),
            "parent_id": self.parent_id,
            "level": self.level,
            "children_count": self.children_count,
            "agent_code": self.agent_code,
            "parent_commission_rate": _money(self.parent_commission_rate),
            "last_login_at": isoformat(self.last_login_at),
            "created_at": isoformat(self.created_at),
        }


class SalespersonProduct(db.Model, BaseMixin):
    """Grants a salesperson the right to mint one (software, key type) pair."""
    __tablename__ = 'salesperson_products'
    __table_args__ = (
        UniqueConstraint('salesperson_id', 'software_id', 'key_type_id',
                         name='uq_salesperson_product'),
    )

    id = db.Column(db.Integer, primary_key=True)
    salesperson_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=False)
    software_id = db.Column(db.Integer, db.ForeignKey('software.id'), nullable=False)
    key_type_id = db.Column(db.Integer, db.ForeignKey('key_types.id'), nullable=False)
    commission_rate = db.Column(db.Numeric(8, 4), nullable=False, default=Decimal("0"))
    key_gen_limit = db.Column(db.Integer, nullable=False, default=0)  # 0 = unlimited
    keys_generated = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    software = db.relationship('Software')
    key_type = db.relationship('KeyType')

    def to_dict(self):
        return {
            "id": self.id,
            "salesperson_id": self.salesperson_id,
            "software_id": self.software_id,
            "software_name": self.software.name if self.software else None,
            "key_type_id": self.key_type_id,
            "key_type_name": self.key_type.name if self.key_type else None,
            "commission_rate": _money(self.commission_rate),
            "key_gen_limit": self.key_gen_limit,
            "keys_generated": self.keys_generated,
            "is_active": self.is_active,
        }


class SalespersonSale(db.Model, BaseMixin):
    __tablename__ = 'salesperson_sales'
    __table_args__ = (
        Index('idx_sales_salesperson', 'salesperson_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    salesperson_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=False)
    software_id = db.Column(db.Integer, db.ForeignKey('software.id'), nullable=False)
    key_type_id = db.Column(db.Integer, db.ForeignKey('key_types.id'), nullable=False)
    sale_code = db.Column(db.String(64), unique=True, nullable=True)
    key_count = db.Column(db.Integer, nullable=False, default=1)
    sale_amount = db.Column(db.Numeric(18, 2), nullable=False)
    commission_rate = db.Column(db.Numeric(8, 4), nullable=False)
    commission_amount = db.Column(db.Numeric(18, 4), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=SettlementStatus.PENDING.value)
    customer_name = db.Column(db.String(100), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)
    customer_email = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "salesperson_id": self.salesperson_id,
            "software_id": self.software_id,
            "key_type_id": self.key_type_id,
            "sale_code": self.sale_code,
            "key_count": self.key_count,
            "sale_amount": _money(self.sale_amount),
            "commission_rate": _money(self.commission_rate),
            "commission_amount": _money(self.commission_amount),
            "status": self.status,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "notes": self.notes,
            "settled_at": isoformat(self.settled_at),
            "created_at": isoformat(self.created_at),
        }


class CommissionSettlement(db.Model, BaseMixin):
    """A batch of agent commissions paid out together."""
    __tablename__ = 'commission_settlements'

    id = db.Column(db.Integer, primary_key=True)
    settlement_no = db.Column(db.String(64), unique=True, nullable=False)
    agent_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=False)
    commission_count = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal("0"))
    status = db.Column(db.String(20), nullable=False, default=SettlementStatus.SETTLED.value)
    approver_id = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "settlement_no": self.settlement_no,
            "agent_id": self.agent_id,
            "commission_count": self.commission_count,
            "total_amount": _money(self.total_amount),
            "status": self.status,
            "approver_id": self.approver_id,
            "paid_at": isoformat(self.paid_at),
            "notes": self.notes,
        }


class SalespersonAgentCommission(db.Model, BaseMixin):
    """Commission owed to one ancestor for one descendant sale."""
    __tablename__ = 'salesperson_agent_commissions'
    __table_args__ = (
        Index('idx_agent_commission_agent', 'agent_id', 'status'),
        Index('idx_agent_commission_sale', 'sale_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('salesperson_sales.id'), nullable=False)
    salesperson_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=False)
    agent_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=False)
    agent_level = db.Column(db.Integer, nullable=False)
    original_amount = db.Column(db.Numeric(18, 2), nullable=False)
    commission_rate = db.Column(db.Numeric(12, 8), nullable=False)
    commission_amount = db.Column(db.Numeric(18, 4), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=SettlementStatus.PENDING.value)
    settlement_id = db.Column(db.Integer, db.ForeignKey('commission_settlements.id'), nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "salesperson_id": self.salesperson_id,
            "agent_id": self.agent_id,
            "agent_level": self.agent_level,
            "original_amount": _money(self.original_amount),
            "commission_rate": _money(self.commission_rate),
            "commission_amount": _money(self.commission_amount),
            "status": self.status,
            "settlement_id": self.settlement_id,
            "settled_at": isoformat(self.settled_at),
            "created_at": isoformat(self.created_at),
        }


class SalespersonAgentInvitation(db.Model, BaseMixin):
    __tablename__ = 'salesperson_agent_invitations'

    id = db.Column(db.Integer, primary_key=True)
    inviter_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=False)
    invite_code = db.Column(db.String(20), unique=True, nullable=False)
    email = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=InvitationStatus.PENDING.value)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invitee_id = db.Column(db.Integer, db.ForeignKey('salespersons.id'), nullable=True)

    def is_expired(self, now):
        return as_utc(self.expires_at) <= now

    def to_dict(self):
        return {
            "id": self.id,
            "inviter_id": self.inviter_id,
            "invite_code": self.invite_code,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
            "expires_at": isoformat(self.expires_at),
            "accepted_at": isoformat(self.accepted_at),
            "invitee_id": self.invitee_id,
            "created_at": isoformat(self.created_at),
        }
