"""Agent network endpoints for the logged-in salesperson."""
from flask import Blueprint, current_app, request
from flask_login import current_user, login_required

from blueprints.request_helpers import json_body, ok, str_field
from licensing.services import get_services

bp = Blueprint("agent", __name__, url_prefix="/api/agent")


@bp.route("/code", methods=["POST"])
@login_required
def my_agent_code():
    return ok({"agent_code": get_services().hierarchy.generate_agent_code(current_user.id)})


@bp.route("/hierarchy", methods=["GET"])
@login_required
def my_hierarchy():
    return ok(get_services().hierarchy.hierarchy(current_user.id))


@bp.route("/invitations", methods=["GET"])
@login_required
def my_invitations():
    invitations = get_services().hierarchy.invitations_for(
        current_user.id, status=request.args.get("status")
    )
    return ok([invitation.to_dict() for invitation in invitations])


@bp.route("/invitations", methods=["POST"])
@login_required
def create_invitation():
    data = json_body()
    invitation = get_services().hierarchy.create_invitation(
        current_user.id, email=data.get("email"), phone=data.get("phone")
    )
    return ok({
        "invitation_id": invitation.id,
        "invite_code": invitation.invite_code,
        "expires_at": invitation.to_dict()["expires_at"],
    }, 201)


@bp.route("/invitations/accept", methods=["POST"])
@login_required
def accept_invitation():
    data = json_body()
    salesperson = get_services().hierarchy.accept_invitation(
        str_field(data, "invite_code"), current_user.id
    )
    current_app.logger.info(f"Salesperson {salesperson.id} accepted invitation")
    return ok({
        "id": salesperson.id,
        "parent_id": salesperson.parent_id,
        "level": salesperson.level,
    }, message="Invitation accepted")


@bp.route("/commissions", methods=["GET"])
@login_required
def my_commissions():
    commission = get_services().commission
    rows, total = commission.commissions_for_agent(current_user.id, status=request.args.get("status"))
    return ok({
        "total_commission": float(total),
        "by_status": {status: float(amount)
                      for status, amount in commission.totals_by_status(current_user.id).items()},
        "commissions": [row.to_dict() for row in rows],
    })


@bp.route("/settlements", methods=["GET"])
@login_required
def my_settlements():
    settlements = get_services().commission.settlements_for(current_user.id)
    return ok([settlement.to_dict() for settlement in settlements])
