"""Admin and salesperson accounts, and password login behind the rate limiter."""
import logging
from decimal import Decimal

from sqlalchemy import or_, select

from extensions import db, unit_of_work, increment
from licensing.errors import (
    AuthenticationError, AuthorizationError, IntegrityViolation, InvalidState, LoginLocked,
    NotFound, ValidationError,
)
from models import (
    Admin, Key, Salesperson, SalespersonAgentInvitation, SalespersonProduct, SalespersonSale,
    SalespersonStatus,
)
from utils import clean_str, to_decimal, utc_now, validate_email, validate_phone

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
EDITABLE_FIELDS = ("name", "phone", "email", "avatar")


def _clean_username(username):
    username = clean_str(username, "username")
    if len(username) < 3 or len(username) > 50:
        raise ValidationError("username must be 3-50 characters")
    return username


def _clean_password(password):
    if not isinstance(password, str):
        raise ValidationError("password must be a string")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def _clean_rate(value, field):
    rate = to_decimal(value, field)
    if rate < 0 or rate > 1:
        raise ValidationError(f"{field} must be between 0 and 1")
    return rate


def _clean_contact(fields):
    email = clean_str(fields.get("email"), "email")
    if email and not validate_email(email):
        raise ValidationError("Invalid email format")
    phone = clean_str(fields.get("phone"), "phone")
    if phone and not validate_phone(phone):
        raise ValidationError("Phone must be 5-15 digits")


class Accounts:

    def __init__(self, limiter, clock=utc_now):
        self.limiter = limiter
        self.clock = clock

    # ------------------------------------------------------------------
    # Salespersons
    # ------------------------------------------------------------------
    def get_salesperson(self, salesperson_id) -> Salesperson:
        salesperson = db.session.get(Salesperson, salesperson_id)
        if salesperson is None:
            raise NotFound(f"Salesperson {salesperson_id} not found")
        return salesperson

    def create_salesperson(self, username, password, name=None, phone=None, email=None,
                           commission_rate=None, parent_commission_rate=None, creator_id=None):
        username = _clean_username(username)
        _clean_password(password)
        _clean_contact({"email": email, "phone": phone})
        rate = _clean_rate(commission_rate, "commission_rate") \
            if commission_rate not in (None, "") else Decimal("0")
        parent_rate = _clean_rate(parent_commission_rate, "parent_commission_rate") \
            if parent_commission_rate not in (None, "") else Decimal("0.1")

        with unit_of_work() as session:
            if Salesperson.query.filter_by(username=username).first():
                raise InvalidState(f"Username '{username}' is already taken")
            salesperson = Salesperson(
                username=username,
                name=name or username,
                phone=phone,
                email=email,
                commission_rate=rate,
                parent_commission_rate=parent_rate,
                creator_id=creator_id,
                status=SalespersonStatus.ACTIVE.value,
                level=0,
                children_count=0,
            )
            salesperson.set_password(password)
            session.add(salesperson)

        logger.info("Salesperson created id=%s username=%s", salesperson.id, username)
        return salesperson

    def update_salesperson(self, salesperson_id, **fields):
        _clean_contact(fields)
        with unit_of_work():
            salesperson = self.get_salesperson(salesperson_id)
            for field in EDITABLE_FIELDS:
                if fields.get(field) is not None:
                    setattr(salesperson, field, fields[field])
            if fields.get("status") is not None:
                if fields["status"] not in {s.value for s in SalespersonStatus}:
                    raise ValidationError(f"Unknown status '{fields['status']}'")
                salesperson.status = fields["status"]
            if fields.get("commission_rate") not in (None, ""):
                salesperson.commission_rate = _clean_rate(fields["commission_rate"], "commission_rate")
            if fields.get("parent_commission_rate") not in (None, ""):
                salesperson.parent_commission_rate = _clean_rate(
                    fields["parent_commission_rate"], "parent_commission_rate")
            if fields.get("password"):
                salesperson.set_password(_clean_password(fields["password"]))
        return salesperson

    def delete_salesperson(self, salesperson_id):
        """Only leaf nodes without sales history can be removed."""
        with unit_of_work() as session:
            salesperson = self.get_salesperson(salesperson_id)
            if Salesperson.query.filter_by(parent_id=salesperson.id).first():
                raise IntegrityViolation("Salesperson has downline agents and cannot be deleted")
            if SalespersonSale.query.filter_by(salesperson_id=salesperson.id).first():
                raise IntegrityViolation("Salesperson has sales and cannot be deleted")
            if Key.query.filter_by(salesperson_id=salesperson.id).first():
                raise IntegrityViolation("Salesperson has keys and cannot be deleted")

            if salesperson.parent_id is not None:
                increment(Salesperson, salesperson.parent_id, children_count=-1)
            SalespersonProduct.query.filter_by(salesperson_id=salesperson.id).delete()
            SalespersonAgentInvitation.query.filter(or_(
                SalespersonAgentInvitation.inviter_id == salesperson.id,
                SalespersonAgentInvitation.invitee_id == salesperson.id,
            )).delete(synchronize_session=False)
            session.delete(salesperson)
        logger.info("Salesperson deleted id=%s", salesperson_id)

    def list_salespersons(self, keyword=None, status=None, parent_id=None,
                          page=1, page_size=10, max_page_size=100):
        stmt = select(Salesperson).order_by(Salesperson.id.desc())
        if keyword:
            stmt = stmt.where(or_(Salesperson.username.contains(keyword),
                                  Salesperson.name.contains(keyword)))
        if status:
            stmt = stmt.where(Salesperson.status == status)
        if parent_id:
            stmt = stmt.where(Salesperson.parent_id == parent_id)
        return db.paginate(stmt, page=page, per_page=page_size,
                           max_per_page=max_page_size, error_out=False)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------
    def _authenticate(self, limiter_key, account):
        """Shared limiter bookkeeping; ``account`` is None when the password failed."""
        if account is None:
            locked, minutes = self.limiter.record_failure(limiter_key)
            if locked:
                raise LoginLocked(
                    f"Too many failed attempts, try again in {minutes} minutes",
                    {"remaining_minutes": minutes},
                )
            remaining = self.limiter.remaining_attempts(limiter_key)
            raise AuthenticationError(
                "Invalid username or password", {"remaining_attempts": remaining}
            )
        return account

    def _check_lock(self, limiter_key):
        locked, minutes = self.limiter.is_locked(limiter_key)
        if locked:
            raise LoginLocked(
                f"Account locked, try again in {minutes} minutes",
                {"remaining_minutes": minutes},
            )

    def login_salesperson(self, username, password) -> Salesperson:
        username = clean_str(username, "username")
        if not username or not password:
            raise ValidationError("username and password are required")
        if not isinstance(password, str):
            raise ValidationError("password must be a string")
        self._check_lock(username)

        salesperson = Salesperson.query.filter_by(username=username).first()
        if salesperson is None or not salesperson.check_password(password):
            salesperson = None
        self._authenticate(username, salesperson)

        if salesperson.status != SalespersonStatus.ACTIVE.value:
            logger.warning("Login refused for %s salesperson %s", salesperson.status, username)
            raise AuthorizationError("Salesperson account is not active")

        self.limiter.reset_attempts(username)
        with unit_of_work():
            salesperson.last_login_at = self.clock()
        logger.info("Salesperson %s logged in", username)
        return salesperson

    def login_admin(self, username, password) -> Admin:
        username = clean_str(username, "username")
        if not username or not password:
            raise ValidationError("username and password are required")
        if not isinstance(password, str):
            raise ValidationError("password must be a string")
        limiter_key = f"admin:{username}"
        self._check_lock(limiter_key)

        admin = Admin.query.filter_by(username=username).first()
        if admin is None or not admin.check_password(password) or not admin.is_active:
            admin = None
        self._authenticate(limiter_key, admin)

        self.limiter.reset_attempts(limiter_key)
        with unit_of_work():
            admin.last_login_at = self.clock()
        logger.info("Admin %s logged in", username)
        return admin

    def create_admin(self, username, password) -> Admin:
        username = _clean_username(username)
        _clean_password(password)
        with unit_of_work() as session:
            if Admin.query.filter_by(username=username).first():
                raise InvalidState(f"Admin '{username}' already exists")
            admin = Admin(username=username, is_active=True)
            admin.set_password(password)
            session.add(admin)
        logger.info("Admin created id=%s username=%s", admin.id, username)
        return admin
