from flask import Blueprint, current_app, session
from flask_login import current_user, login_required, login_user, logout_user

from blueprints.request_helpers import json_body, ok
from licensing.services import get_services
import logging


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="/api")


#===========================================================================
#      SALESPERSON LOGIN
#==============================================================================
@bp.route("/salesperson/login", methods=["POST"])
def salesperson_login():
    """
    Password login for salespeople, throttled per username.
    401 with remaining attempts on a bad password, 429 once locked,
    403 for suspended or inactive accounts.
    """
    data = json_body()
    salesperson = get_services().accounts.login_salesperson(
        data.get("username"), data.get("password")
    )
    login_user(salesperson, remember=bool(data.get("remember")))
    current_app.logger.info(f"Salesperson {salesperson.id} session started")
    return ok(salesperson.to_dict(), message="Login successful")


@bp.route("/salesperson/logout", methods=["POST"])
def salesperson_logout():
    if current_user.is_authenticated:
        logger.info("Salesperson %s logged out", current_user.id)
    logout_user()
    return ok(message="Logged out")


@bp.route("/salesperson/me", methods=["GET"])
@login_required
def salesperson_me():
    return ok(current_user.to_dict())


#===========================================================================
#      ADMIN LOGIN
#==============================================================================
@bp.route("/admin/login", methods=["POST"])
def admin_login():
    data = json_body()
    admin = get_services().accounts.login_admin(data.get("username"), data.get("password"))
    session["admin_id"] = admin.id
    return ok(admin.to_dict(), message="Login successful")


@bp.route("/admin/logout", methods=["POST"])
def admin_logout():
    session.pop("admin_id", None)
    return ok(message="Logged out")
