"""
Software / key-type catalog and the bindings that gate minting.

A key of type T may only be minted for software S while an active
(S, T) binding exists. Salespeople additionally need an active
``SalespersonProduct`` for the pair.
"""
import logging

from sqlalchemy import select

from extensions import db, unit_of_work
from licensing.errors import (
    AuthorizationError, IntegrityViolation, InvalidState, NotFound, ValidationError,
)
from models import Key, KeyType, Salesperson, SalespersonProduct, Software, SoftwareKeyType
from utils import clean_str, to_decimal

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 100
SOFTWARE_FIELDS = ("name", "version", "announcement")
KEY_TYPE_FIELDS = ("name", "description", "hours", "price")


def _clean_name(name):
    name = clean_str(name, "name")
    if not name:
        raise ValidationError("name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"name must be at most {NAME_MAX_LENGTH} characters")
    return name


def _clean_hours(hours):
    try:
        hours = int(hours)
    except (TypeError, ValueError):
        raise ValidationError("hours must be an integer")
    if hours < 1:
        raise ValidationError("hours must be at least 1")
    return hours


def _clean_price(price):
    price = to_decimal(price, "price")
    if price < 0:
        raise ValidationError("price must not be negative")
    return price


def _clean_rate(rate, field="commission_rate"):
    rate = to_decimal(rate, field)
    if rate < 0 or rate > 1:
        raise ValidationError(f"{field} must be between 0 and 1")
    return rate


class Catalog:

    # ------------------------------------------------------------------
    # Software
    # ------------------------------------------------------------------
    def get_software(self, software_id) -> Software:
        software = db.session.get(Software, software_id)
        if software is None:
            raise NotFound(f"Software {software_id} not found")
        return software

    def create_software(self, name, version=None, announcement=None, is_active=True):
        name = _clean_name(name)
        with unit_of_work() as session:
            if Software.query.filter_by(name=name).first():
                raise InvalidState(f"Software '{name}' already exists")
            software = Software(name=name, version=version, announcement=announcement,
                                is_active=bool(is_active))
            session.add(software)
        logger.info("Software created id=%s name=%s", software.id, software.name)
        return software

    def update_software(self, software_id, **fields):
        with unit_of_work():
            software = self.get_software(software_id)
            if "name" in fields and fields["name"] is not None:
                name = _clean_name(fields["name"])
                clash = Software.query.filter(Software.name == name, Software.id != software.id).first()
                if clash:
                    raise InvalidState(f"Software '{name}' already exists")
                software.name = name
            for field in ("version", "announcement"):
                if field in fields and fields[field] is not None:
                    setattr(software, field, fields[field])
        return software

    def set_software_active(self, software_id, active: bool):
        with unit_of_work():
            software = self.get_software(software_id)
            software.is_active = bool(active)
        logger.info("Software %s %s", software_id, "activated" if active else "deactivated")
        return software

    def delete_software(self, software_id):
        with unit_of_work() as session:
            software = self.get_software(software_id)
            if Key.query.filter_by(software_id=software.id).first():
                raise IntegrityViolation("Software has keys and cannot be deleted")
            SalespersonProduct.query.filter_by(software_id=software.id).delete()
            session.delete(software)
        logger.info("Software deleted id=%s", software_id)

    def list_software(self, name=None, is_active=None, page=1, page_size=10, max_page_size=100):
        stmt = select(Software).order_by(Software.id.desc())
        if name:
            stmt = stmt.where(Software.name.contains(name))
        if is_active is not None:
            stmt = stmt.where(Software.is_active.is_(bool(is_active)))
        return db.paginate(stmt, page=page, per_page=page_size,
                           max_per_page=max_page_size, error_out=False)

    # ------------------------------------------------------------------
    # Key types
    # ------------------------------------------------------------------
    def get_key_type(self, key_type_id) -> KeyType:
        key_type = db.session.get(KeyType, key_type_id)
        if key_type is None:
            raise NotFound(f"Key type {key_type_id} not found")
        return key_type

    def create_key_type(self, name, hours, price, description=None, creator_id=None, is_active=True):
        name = _clean_name(name)
        hours = _clean_hours(hours)
        price = _clean_price(price)
        with unit_of_work() as session:
            if KeyType.query.filter_by(name=name).first():
                raise InvalidState(f"Key type '{name}' already exists")
            key_type = KeyType(name=name, hours=hours, price=price, description=description,
                               creator_id=creator_id, is_active=bool(is_active))
            session.add(key_type)
        logger.info("Key type created id=%s name=%s hours=%s price=%s",
                    key_type.id, name, hours, price)
        return key_type

    def update_key_type(self, key_type_id, **fields):
        """Existing keys keep their minted name/hours/price snapshot."""
        with unit_of_work():
            key_type = self.get_key_type(key_type_id)
            if fields.get("name") is not None:
                name = _clean_name(fields["name"])
                clash = KeyType.query.filter(KeyType.name == name, KeyType.id != key_type.id).first()
                if clash:
                    raise InvalidState(f"Key type '{name}' already exists")
                key_type.name = name
            if fields.get("hours") is not None:
                key_type.hours = _clean_hours(fields["hours"])
            if fields.get("price") is not None:
                key_type.price = _clean_price(fields["price"])
            if fields.get("description") is not None:
                key_type.description = fields["description"]
        return key_type

    def set_key_type_active(self, key_type_id, active: bool):
        with unit_of_work():
            key_type = self.get_key_type(key_type_id)
            key_type.is_active = bool(active)
        logger.info("Key type %s %s", key_type_id, "activated" if active else "deactivated")
        return key_type

    def delete_key_type(self, key_type_id):
        with unit_of_work() as session:
            key_type = self.get_key_type(key_type_id)
            key_count = Key.query.filter_by(key_type_id=key_type.id).count()
            if key_count:
                raise IntegrityViolation(
                    f"Key type has {key_count} keys and cannot be deleted",
                    {"key_count": key_count},
                )
            SalespersonProduct.query.filter_by(key_type_id=key_type.id).delete()
            session.delete(key_type)
        logger.info("Key type deleted id=%s", key_type_id)

    def list_key_types(self, name=None, is_active=None, page=1, page_size=10, max_page_size=100):
        stmt = select(KeyType).order_by(KeyType.id.desc())
        if name:
            stmt = stmt.where(KeyType.name.contains(name))
        if is_active is not None:
            stmt = stmt.where(KeyType.is_active.is_(bool(is_active)))
        return db.paginate(stmt, page=page, per_page=page_size,
                           max_per_page=max_page_size, error_out=False)

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------
    def _binding(self, software_id, key_type_id):
        return SoftwareKeyType.query.filter_by(
            software_id=software_id, key_type_id=key_type_id
        ).first()

    def bind(self, software_id, key_type_id, creator_id=None) -> SoftwareKeyType:
        with unit_of_work() as session:
            self.get_software(software_id)
            self.get_key_type(key_type_id)
            if self._binding(software_id, key_type_id):
                raise InvalidState("Key type is already bound to this software")
            binding = SoftwareKeyType(software_id=software_id, key_type_id=key_type_id,
                                      creator_id=creator_id)
            session.add(binding)
        logger.info("Bound key type %s to software %s", key_type_id, software_id)
        return binding

    def unbind(self, software_id, key_type_id):
        with unit_of_work():
            deleted = SoftwareKeyType.query.filter_by(
                software_id=software_id, key_type_id=key_type_id
            ).delete()
            if not deleted:
                raise NotFound("Binding not found")
        logger.info("Unbound key type %s from software %s", key_type_id, software_id)

    def key_types_for(self, software_id, active_only=False):
        self.get_software(software_id)
        query = KeyType.query.join(SoftwareKeyType, SoftwareKeyType.key_type_id == KeyType.id) \
            .filter(SoftwareKeyType.software_id == software_id)
        if active_only:
            query = query.filter(SoftwareKeyType.is_active.is_(True), KeyType.is_active.is_(True))
        return query.order_by(KeyType.id).all()

    def require_binding(self, software_id, key_type_id) -> SoftwareKeyType:
        binding = self._binding(software_id, key_type_id)
        if binding is None or not binding.is_active:
            raise AuthorizationError("Key type is not bound to this software")
        return binding

    # ------------------------------------------------------------------
    # Salesperson product assignment
    # ------------------------------------------------------------------
    def assign_product(self, salesperson_id, software_id, key_type_id,
                       commission_rate=None, key_gen_limit=None) -> SalespersonProduct:
        """Grant (or re-grant) a salesperson the right to mint a pair."""
        rate = _clean_rate(commission_rate) if commission_rate not in (None, "") else None
        limit = None
        if key_gen_limit not in (None, ""):
            try:
                limit = int(key_gen_limit)
            except (TypeError, ValueError):
                raise ValidationError("key_gen_limit must be an integer")
            if limit < 0:
                raise ValidationError("key_gen_limit must not be negative")

        with unit_of_work() as session:
            salesperson = db.session.get(Salesperson, salesperson_id)
            if salesperson is None:
                raise NotFound(f"Salesperson {salesperson_id} not found")
            self.get_software(software_id)
            self.get_key_type(key_type_id)
            if self._binding(software_id, key_type_id) is None:
                raise NotFound("Key type is not bound to this software")

            product = SalespersonProduct.query.filter_by(
                salesperson_id=salesperson_id, software_id=software_id, key_type_id=key_type_id
            ).first()
            if product is None:
                product = SalespersonProduct(
                    salesperson_id=salesperson_id,
                    software_id=software_id,
                    key_type_id=key_type_id,
                    commission_rate=rate if rate is not None else salesperson.commission_rate,
                    key_gen_limit=limit or 0,
                    keys_generated=0,
                )
                session.add(product)
            else:
                product.is_active = True
                if rate is not None and rate > 0:
                    product.commission_rate = rate
                if limit is not None and limit > 0:
                    product.key_gen_limit = limit
        logger.info("Product (%s, %s) assigned to salesperson %s",
                    software_id, key_type_id, salesperson_id)
        return product

    def revoke_product(self, salesperson_id, product_id):
        with unit_of_work():
            product = SalespersonProduct.query.filter_by(
                id=product_id, salesperson_id=salesperson_id
            ).first()
            if product is None:
                raise NotFound("Product assignment not found")
            product.is_active = False
        return product

    def products_for(self, salesperson_id, active_only=False):
        query = SalespersonProduct.query.filter_by(salesperson_id=salesperson_id)
        if active_only:
            query = query.filter(SalespersonProduct.is_active.is_(True))
        return query.order_by(SalespersonProduct.id).all()

    def active_product(self, salesperson_id, software_id, key_type_id) -> SalespersonProduct:
        product = SalespersonProduct.query.filter_by(
            salesperson_id=salesperson_id,
            software_id=software_id,
            key_type_id=key_type_id,
            is_active=True,
        ).first()
        if product is None:
            raise AuthorizationError("Product is not assigned to this salesperson")
        return product

