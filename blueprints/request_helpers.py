from flask import current_app, jsonify, request

from licensing.errors import ValidationError
from licensing.export import keys_to_csv, keys_to_json
from licensing.key_store import KeyFilter
from utils import clean_str, parse_datetime


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Invalid or missing JSON body")
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def str_field(data, name):
    return clean_str(data.get(name), name)


def ok(data=None, status=200, message=None):
    payload = {"success": True, "data": data}
    if message:
        payload["message"] = message
    return jsonify(payload), status


def arg_int(name, default=None):
    value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def arg_bool(name):
    value = request.args.get(name)
    if value in (None, ""):
        return None
    return value.lower() in ("true", "1", "t", "yes")


def page_args():
    page = arg_int("page", 1)
    page_size = arg_int("page_size", current_app.config.get("KEYS_PAGE_SIZE", 10))
    page = page if page > 0 else 1
    page_size = page_size if page_size > 0 else 10
    return page, min(page_size, current_app.config.get("KEYS_MAX_PAGE_SIZE", 100))


def page_payload(pagination):
    return {
        "list": [item.to_dict() for item in pagination.items],
        "total": pagination.total,
        "page": pagination.page,
        "page_size": pagination.per_page,
        "pages": pagination.pages,
    }


def key_filter_from_args():
    return KeyFilter(
        status=request.args.get("status") or None,
        type_id=arg_int("type_id"),
        software_id=arg_int("software_id"),
        creator_id=arg_int("creator_id"),
        creator_type=request.args.get("creator_type") or None,
        salesperson_id=arg_int("salesperson_id"),
        activator_id=arg_int("activator_id"),
        code=request.args.get("code") or None,
        key_code=request.args.get("key_code") or None,
        start_time=parse_datetime(request.args.get("start_time"), "start_time"),
        end_time=parse_datetime(request.args.get("end_time"), "end_time"),
    )


def export_response(keys, fmt):
    fmt = (fmt or "csv").lower()
    if fmt == "json":
        return current_app.response_class(keys_to_json(keys), mimetype="application/json")
    if fmt != "csv":
        raise ValidationError("format must be csv or json")
    response = current_app.response_class(keys_to_csv(keys), mimetype="text/csv")
    response.headers["Content-Disposition"] = "attachment; filename=keys.csv"
    return response
