"""Public key endpoints used by client software: activation and status."""
from flask import Blueprint, request

from blueprints.request_helpers import arg_int, json_body, ok, str_field
from licensing.services import get_services
from utils import isoformat

bp = Blueprint("keys", __name__, url_prefix="/api/keys")


@bp.route("/activate", methods=["POST"])
def activate_key():
    data = json_body()
    key = get_services().keys.activate(
        str_field(data, "code"),
        str_field(data, "key_code"),
        data.get("software_id"),
        device_info=data.get("device_info"),
        activator_id=data.get("user_id"),
    )
    return ok({
        "id": key.id,
        "status": key.status,
        "software_id": key.software_id,
        "software_name": key.software_name,
        "key_type_name": key.key_type_name,
        "hours": key.hours,
        "activated_at": isoformat(key.activated_at),
        "expired_at": isoformat(key.expired_at),
    }, message="Key activated")


@bp.route("/status", methods=["GET"])
def key_status():
    services = get_services()
    keys = services.keys.status(
        key_id=arg_int("id"),
        code=request.args.get("code") or None,
        key_code=request.args.get("key_code") or None,
        software_id=arg_int("software_id"),
    )
    now = services.clock()
    return ok([
        {
            "id": key.id,
            "status": key.status,
            "software_id": key.software_id,
            "key_type_name": key.key_type_name,
            "hours": key.hours,
            "activated_at": isoformat(key.activated_at),
            "expired_at": isoformat(key.expired_at),
            "is_blacklisted": key.is_blacklisted,
            "is_valid": key.is_valid(now),
        }
        for key in keys
    ])
