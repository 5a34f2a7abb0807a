#======================================================================================
#
# Admin API: catalog, keys, salespersons, agent settlements
#
#=======================================================================================
from functools import wraps
import logging

from flask import Blueprint, abort, current_app, request, session

from blueprints.request_helpers import (
    arg_bool, export_response, json_body, key_filter_from_args, ok, page_args, page_payload,
)
from extensions import db
from licensing.errors import ValidationError
from licensing.key_store import Creator
from licensing.services import get_services
from models import Admin
from utils import parse_datetime, to_int

logger = logging.getLogger(__name__)


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    - Checks that 'admin_id' exists in session.
    - Fetches the admin from the database (to get current is_active status).
    - Aborts with 403 Forbidden otherwise.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_id = session.get("admin_id")
        if admin_id is None:
            abort(403)

        admin = db.session.get(Admin, admin_id)
        if admin is None or not admin.is_active:
            abort(403)

        return f(*args, **kwargs)

    return decorated_function


def current_admin_id():
    return session.get("admin_id")


admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


# ==================================================================================
# SOFTWARE
# ==================================================================================
@admin_bp.route("/software", methods=["GET"])
@admin_required
def list_software():
    page, page_size = page_args()
    result = get_services().catalog.list_software(
        name=request.args.get("name"), is_active=arg_bool("is_active"),
        page=page, page_size=page_size,
    )
    return ok(page_payload(result))


@admin_bp.route("/software", methods=["POST"])
@admin_required
def create_software():
    data = json_body()
    software = get_services().catalog.create_software(
        data.get("name"), version=data.get("version"), announcement=data.get("announcement"),
    )
    return ok(software.to_dict(), 201)


@admin_bp.route("/software/<int:software_id>", methods=["GET"])
@admin_required
def get_software(software_id):
    return ok(get_services().catalog.get_software(software_id).to_dict())


@admin_bp.route("/software/<int:software_id>", methods=["PUT"])
@admin_required
def update_software(software_id):
    data = json_body()
    software = get_services().catalog.update_software(
        software_id, name=data.get("name"), version=data.get("version"),
        announcement=data.get("announcement"),
    )
    return ok(software.to_dict())


@admin_bp.route("/software/<int:software_id>", methods=["DELETE"])
@admin_required
def delete_software(software_id):
    get_services().catalog.delete_software(software_id)
    return ok(message="Software deleted")


@admin_bp.route("/software/<int:software_id>/activate", methods=["POST"])
@admin_required
def activate_software(software_id):
    return ok(get_services().catalog.set_software_active(software_id, True).to_dict())


@admin_bp.route("/software/<int:software_id>/deactivate", methods=["POST"])
@admin_required
def deactivate_software(software_id):
    return ok(get_services().catalog.set_software_active(software_id, False).to_dict())


@admin_bp.route("/software/<int:software_id>/key-types", methods=["GET"])
@admin_required
def software_key_types(software_id):
    key_types = get_services().catalog.key_types_for(software_id)
    return ok([key_type.to_dict() for key_type in key_types])


@admin_bp.route("/software/<int:software_id>/key-types/<int:key_type_id>", methods=["POST"])
@admin_required
def bind_key_type(software_id, key_type_id):
    binding = get_services().catalog.bind(software_id, key_type_id, creator_id=current_admin_id())
    return ok(binding.to_dict(), 201)


@admin_bp.route("/software/<int:software_id>/key-types/<int:key_type_id>", methods=["DELETE"])
@admin_required
def unbind_key_type(software_id, key_type_id):
    get_services().catalog.unbind(software_id, key_type_id)
    return ok(message="Binding removed")


# ==================================================================================
# KEY TYPES
# ==================================================================================
@admin_bp.route("/key-types", methods=["GET"])
@admin_required
def list_key_types():
    page, page_size = page_args()
    result = get_services().catalog.list_key_types(
        name=request.args.get("name"), is_active=arg_bool("is_active"),
        page=page, page_size=page_size,
    )
    return ok(page_payload(result))


@admin_bp.route("/key-types", methods=["POST"])
@admin_required
def create_key_type():
    data = json_body()
    key_type = get_services().catalog.create_key_type(
        data.get("name"), data.get("hours"), data.get("price"),
        description=data.get("description"), creator_id=current_admin_id(),
    )
    return ok(key_type.to_dict(), 201)


@admin_bp.route("/key-types/<int:key_type_id>", methods=["GET"])
@admin_required
def get_key_type(key_type_id):
    return ok(get_services().catalog.get_key_type(key_type_id).to_dict())


@admin_bp.route("/key-types/<int:key_type_id>", methods=["PUT"])
@admin_required
def update_key_type(key_type_id):
    data = json_body()
    key_type = get_services().catalog.update_key_type(
        key_type_id, name=data.get("name"), hours=data.get("hours"), price=data.get("price"),
        description=data.get("description"),
    )
    return ok(key_type.to_dict())


@admin_bp.route("/key-types/<int:key_type_id>", methods=["DELETE"])
@admin_required
def delete_key_type(key_type_id):
    get_services().catalog.delete_key_type(key_type_id)
    return ok(message="Key type deleted")


@admin_bp.route("/key-types/<int:key_type_id>/activate", methods=["POST"])
@admin_required
def activate_key_type(key_type_id):
    return ok(get_services().catalog.set_key_type_active(key_type_id, True).to_dict())


@admin_bp.route("/key-types/<int:key_type_id>/deactivate", methods=["POST"])
@admin_required
def deactivate_key_type(key_type_id):
    return ok(get_services().catalog.set_key_type_active(key_type_id, False).to_dict())


# ==================================================================================
# KEYS
# ==================================================================================
@admin_bp.route("/keys/batch", methods=["POST"])
@admin_required
def batch_create_keys():
    data = json_body()
    result = get_services().keys.mint(
        to_int(data.get("software_id"), "software_id"),
        to_int(data.get("key_type_id"), "key_type_id"),
        data.get("count"),
        Creator.admin(current_admin_id()),
    )
    current_app.logger.info(f"Admin {current_admin_id()} minted {len(result.keys)} keys")
    return ok({"count": len(result.keys), "keys": [key.to_dict() for key in result.keys]}, 201)


@admin_bp.route("/keys", methods=["GET"])
@admin_required
def list_keys():
    page, page_size = page_args()
    result = get_services().keys.list(key_filter_from_args(), page=page, page_size=page_size)
    return ok(page_payload(result))


@admin_bp.route("/keys/export", methods=["GET"])
@admin_required
def export_keys():
    keys = get_services().keys.export(key_filter_from_args())
    return export_response(keys, request.args.get("format"))


@admin_bp.route("/keys/<int:key_id>", methods=["GET"])
@admin_required
def get_key(key_id):
    return ok(get_services().keys.get(key_id).to_dict())


@admin_bp.route("/keys/<int:key_id>/void", methods=["POST"])
@admin_required
def void_key(key_id):
    key = get_services().keys.void(key_id)
    return ok(key.to_dict(), message="Key voided")


@admin_bp.route("/keys/<int:key_id>/blacklist", methods=["POST"])
@admin_required
def blacklist_key(key_id):
    data = request.get_json(silent=True) or {}
    key = get_services().keys.set_blacklisted(key_id, data.get("blacklisted", True))
    return ok(key.to_dict())


# ==================================================================================
# SALESPERSONS
# ==================================================================================
@admin_bp.route("/salespersons", methods=["GET"])
@admin_required
def list_salespersons():
    page, page_size = page_args()
    result = get_services().accounts.list_salespersons(
        keyword=request.args.get("keyword"),
        status=request.args.get("status"),
        parent_id=request.args.get("parent_id", type=int),
        page=page, page_size=page_size,
    )
    return ok(page_payload(result))


@admin_bp.route("/salespersons", methods=["POST"])
@admin_required
def create_salesperson():
    data = json_body()
    salesperson = get_services().accounts.create_salesperson(
        data.get("username"),
        data.get("password"),
        name=data.get("name"),
        phone=data.get("phone"),
        email=data.get("email"),
        commission_rate=data.get("commission_rate"),
        parent_commission_rate=data.get("parent_commission_rate"),
        creator_id=current_admin_id(),
    )
    return ok(salesperson.to_dict(), 201)


@admin_bp.route("/salespersons/<int:salesperson_id>", methods=["GET"])
@admin_required
def get_salesperson(salesperson_id):
    return ok(get_services().accounts.get_salesperson(salesperson_id).to_dict())


@admin_bp.route("/salespersons/<int:salesperson_id>", methods=["PUT"])
@admin_required
def update_salesperson(salesperson_id):
    data = json_body()
    allowed = ("name", "phone", "email", "avatar", "status", "commission_rate",
               "parent_commission_rate", "password")
    salesperson = get_services().accounts.update_salesperson(
        salesperson_id, **{field: data.get(field) for field in allowed}
    )
    return ok(salesperson.to_dict())


@admin_bp.route("/salespersons/<int:salesperson_id>", methods=["DELETE"])
@admin_required
def delete_salesperson(salesperson_id):
    get_services().accounts.delete_salesperson(salesperson_id)
    return ok(message="Salesperson deleted")


@admin_bp.route("/salespersons/<int:salesperson_id>/products", methods=["GET"])
@admin_required
def salesperson_products(salesperson_id):
    products = get_services().catalog.products_for(salesperson_id)
    return ok([product.to_dict() for product in products])


@admin_bp.route("/salespersons/<int:salesperson_id>/products", methods=["POST"])
@admin_required
def assign_product(salesperson_id):
    data = json_body()
    product = get_services().catalog.assign_product(
        salesperson_id,
        to_int(data.get("software_id"), "software_id"),
        to_int(data.get("key_type_id"), "key_type_id"),
        commission_rate=data.get("commission_rate"),
        key_gen_limit=data.get("key_gen_limit"),
    )
    return ok(product.to_dict(), 201)


@admin_bp.route("/salespersons/<int:salesperson_id>/products/<int:product_id>", methods=["DELETE"])
@admin_required
def revoke_product(salesperson_id, product_id):
    product = get_services().catalog.revoke_product(salesperson_id, product_id)
    return ok(product.to_dict(), message="Product revoked")


@admin_bp.route("/salespersons/<int:salesperson_id>/sales", methods=["GET"])
@admin_required
def salesperson_sales(salesperson_id):
    page, page_size = page_args()
    result = get_services().sales.sales_for(
        salesperson_id,
        status=request.args.get("status"),
        start=parse_datetime(request.args.get("start_time"), "start_time"),
        end=parse_datetime(request.args.get("end_time"), "end_time"),
        page=page, page_size=page_size,
    )
    return ok(page_payload(result))


@admin_bp.route("/salespersons/<int:salesperson_id>/sales/settle", methods=["POST"])
@admin_required
def settle_sales(salesperson_id):
    settled = get_services().sales.settle_sales(salesperson_id)
    return ok({"settled": settled})


@admin_bp.route("/sales/<int:sale_id>/cancel", methods=["POST"])
@admin_required
def cancel_sale(sale_id):
    sale = get_services().sales.cancel_sale(sale_id)
    return ok(sale.to_dict(), message="Sale cancelled")


@admin_bp.route("/sales/<int:sale_id>/cascade", methods=["POST"])
@admin_required
def retry_cascade(sale_id):
    rows = get_services().sales.retry_cascade(sale_id)
    return ok([row.to_dict() for row in rows])


@admin_bp.route("/salespersons/<int:salesperson_id>/commission", methods=["GET"])
@admin_required
def salesperson_commission(salesperson_id):
    stats = get_services().sales.commission_stats(
        salesperson_id,
        start=parse_datetime(request.args.get("start_time"), "start_time"),
        end=parse_datetime(request.args.get("end_time"), "end_time"),
    )
    return ok(stats)


@admin_bp.route("/salespersons/<int:salesperson_id>/agent-code", methods=["POST"])
@admin_required
def generate_agent_code(salesperson_id):
    code = get_services().hierarchy.generate_agent_code(salesperson_id)
    return ok({"agent_code": code})


@admin_bp.route("/salespersons/<int:salesperson_id>/hierarchy", methods=["GET"])
@admin_required
def salesperson_hierarchy(salesperson_id):
    return ok(get_services().hierarchy.hierarchy(salesperson_id))


# ==================================================================================
# AGENT COMMISSION SETTLEMENT
# ==================================================================================
@admin_bp.route("/agents/<int:agent_id>/settle", methods=["POST"])
@admin_required
def settle_agent_commissions(agent_id):
    data = request.get_json(silent=True) or {}
    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    settlement = get_services().commission.settle(
        agent_id, approver_id=current_admin_id(), notes=notes
    )
    return ok(settlement.to_dict(), 201)


@admin_bp.route("/agents/<int:agent_id>/settlements", methods=["GET"])
@admin_required
def agent_settlements(agent_id):
    settlements = get_services().commission.settlements_for(agent_id)
    return ok([settlement.to_dict() for settlement in settlements])
