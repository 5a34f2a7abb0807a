"""Salesperson self-service: products, key generation, sales, own keys."""
from flask import Blueprint, request
from flask_login import current_user, login_required

from blueprints.request_helpers import (
    export_response, json_body, key_filter_from_args, ok, page_args, page_payload,
)
from licensing.key_store import SaleDetails
from licensing.services import get_services
from utils import parse_datetime, to_int

bp = Blueprint("salesperson", __name__, url_prefix="/api/salesperson")


@bp.route("/products", methods=["GET"])
@login_required
def my_products():
    products = get_services().catalog.products_for(current_user.id, active_only=True)
    return ok([product.to_dict() for product in products])


@bp.route("/keys/generate", methods=["POST"])
@login_required
def generate_keys():
    data = json_body()
    details = SaleDetails(
        customer_name=data.get("customer_name"),
        customer_phone=data.get("customer_phone"),
        customer_email=data.get("customer_email"),
        notes=data.get("notes"),
    )
    result = get_services().sales.generate_keys(
        current_user.id,
        to_int(data.get("software_id"), "software_id"),
        to_int(data.get("key_type_id"), "key_type_id"),
        data.get("count"),
        details,
    )
    return ok(result.to_dict(), 201)


@bp.route("/keys", methods=["GET"])
@login_required
def my_keys():
    page, page_size = page_args()
    result = get_services().keys.list(
        key_filter_from_args(), page=page, page_size=page_size,
        scope_salesperson_id=current_user.id,
    )
    return ok(page_payload(result))


@bp.route("/keys/export", methods=["GET"])
@login_required
def export_my_keys():
    keys = get_services().keys.export(key_filter_from_args(), scope_salesperson_id=current_user.id)
    return export_response(keys, request.args.get("format"))


@bp.route("/keys/<int:key_id>", methods=["GET"])
@login_required
def my_key(key_id):
    return ok(get_services().keys.get(key_id, scope_salesperson_id=current_user.id).to_dict())


@bp.route("/sales", methods=["GET"])
@login_required
def my_sales():
    page, page_size = page_args()
    result = get_services().sales.sales_for(
        current_user.id,
        status=request.args.get("status"),
        start=parse_datetime(request.args.get("start_time"), "start_time"),
        end=parse_datetime(request.args.get("end_time"), "end_time"),
        page=page, page_size=page_size,
    )
    return ok(page_payload(result))


@bp.route("/commission", methods=["GET"])
@login_required
def my_commission():
    stats = get_services().sales.commission_stats(
        current_user.id,
        start=parse_datetime(request.args.get("start_time"), "start_time"),
        end=parse_datetime(request.args.get("end_time"), "end_time"),
    )
    return ok(stats)
