"""CSV / JSON renderings of key rows for download."""
import csv
import io
import json

from utils import as_utc

CSV_HEADER = [
    "id", "code", "key_code", "key_type_id", "key_type_name", "hours", "price",
    "software_id", "software_name", "status", "creator_id", "creator_type",
    "salesperson_id", "user_id", "device_info", "used_at", "expired_at",
    "activated_at", "is_blacklisted", "created_at", "updated_at",
]
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _fmt_time(value):
    value = as_utc(value)
    return value.strftime(TIME_FORMAT) if value else ""


def _none_blank(value):
    return "" if value is None else value


def keys_to_csv(keys) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for key in keys:
        writer.writerow([
            key.id,
            key.code,
            key.key_code,
            key.key_type_id,
            key.key_type_name,
            key.hours,
            f"{key.price:.2f}",
            key.software_id,
            key.software_name,
            key.status,
            _none_blank(key.creator_id),
            key.creator_type,
            _none_blank(key.salesperson_id),
            _none_blank(key.user_id),
            _none_blank(key.device_info),
            _fmt_time(key.used_at),
            _fmt_time(key.expired_at),
            _fmt_time(key.activated_at),
            "true" if key.is_blacklisted else "false",
            _fmt_time(key.created_at),
            _fmt_time(key.updated_at),
        ])
    return buffer.getvalue()


def keys_to_json(keys) -> str:
    return json.dumps([key.to_dict() for key in keys], ensure_ascii=False)
