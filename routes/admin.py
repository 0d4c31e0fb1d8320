"""Administrator sign-in, claim review and account credit endpoints."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy import func, or_
from wtforms import PasswordField, StringField, TextAreaField
from wtforms.validators import DataRequired, Optional

from extensions import csrf, db
from models import CLAIM_STATUSES, CLAIM_TYPES, Claim, User
from utils.account_credit import set_user_credit
from utils.audit import log_action
from utils.claim_lifecycle import claim_id_in_range, find_claim, update_claim_status
from utils.claim_stats import admin_summary
from utils.credential_store import verify_admin_credential
from utils.decorators import admin_required
from utils.email_service import notify_claim_status
from utils.errors import AuthenticationError, ValidationError
from utils.forms import ApiForm
from utils.security import normalize_text
from .auth import establish_session

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

RECENT_CLAIMS_LIMIT = 5
MAX_PAGE = 100000


class AdminLoginForm(ApiForm):
    username = StringField("Username", validators=[DataRequired()])
    password = PasswordField("Password", validators=[DataRequired()])


class ClaimStatusForm(ApiForm):
    claimId = StringField("Claim", validators=[DataRequired()])
    status = StringField("Status", validators=[DataRequired()])
    notes = TextAreaField("Notes", validators=[Optional()])


class CreditForm(ApiForm):
    userId = StringField("User", validators=[DataRequired()])
    amount = StringField("Amount", validators=[DataRequired()])
    note = TextAreaField("Note", validators=[Optional()])


def _page_arg() -> int:
    page = request.args.get("page", 1, type=int) or 1
    return min(max(page, 1), MAX_PAGE)


@admin_bp.route("/login", methods=["POST"])
@csrf.exempt
def login():
    form = AdminLoginForm().validate_or_raise("Username and password are required")
    username = normalize_text(form.username.data, 80)
    admin = verify_admin_credential(username, form.password.data)
    if admin is None:
        log_action("ADMIN_LOGIN_FAILED", None, context=username)
        db.session.commit()
        raise AuthenticationError("Invalid credentials")

    establish_session(admin)
    log_action("ADMIN_LOGIN", admin)
    db.session.commit()
    return jsonify({"success": True, "message": "Admin login successful!"})


@admin_bp.route("/dashboard", methods=["GET"])
@admin_required
def dashboard():
    recent = Claim.query.order_by(Claim.created_at.desc(), Claim.id.desc()).limit(RECENT_CLAIMS_LIMIT).all()
    return jsonify(
        {
            "admin": {"id": current_user.id, "username": current_user.username},
            "stats": admin_summary(),
            "recent_claims": [claim.detail_payload(include_owner=True) for claim in recent],
        }
    )


@admin_bp.route("/claims", methods=["GET"])
@admin_required
def list_claims():
    """Filterable, paginated claim queue. ``All`` or an empty filter means no filter."""
    status = normalize_text(request.args.get("status"), 20)
    claim_type = normalize_text(request.args.get("type"), 80)
    search = normalize_text(request.args.get("search"), 120)

    query = Claim.query.join(User, Claim.user_id == User.id)
    if status and status != "All":
        if status not in CLAIM_STATUSES:
            raise ValidationError("Unknown status filter.")
        query = query.filter(Claim.status == status)
    if claim_type and claim_type != "All":
        if claim_type not in CLAIM_TYPES:
            raise ValidationError("Unknown claim type filter.")
        query = query.filter(Claim.claim_type == claim_type)
    if search:
        pattern = f"%{search}%"
        conditions = [
            User.name.ilike(pattern),
            User.email.ilike(pattern),
            Claim.reference_number.ilike(pattern),
        ]
        digits = search.lstrip("#")
        if digits.isdigit() and claim_id_in_range(int(digits)):
            conditions.append(Claim.id == int(digits))
        query = query.filter(or_(*conditions))

    per_page = current_app.config.get("ADMIN_CLAIMS_PER_PAGE", 20)
    pagination = (
        query.order_by(Claim.created_at.desc(), Claim.id.desc())
        .paginate(page=_page_arg(), per_page=per_page, error_out=False)
    )
    return jsonify(
        {
            "claims": [claim.detail_payload(include_owner=True) for claim in pagination.items],
            "page": pagination.page,
            "pages": pagination.pages,
            "per_page": per_page,
            "total": pagination.total,
        }
    )


@admin_bp.route("/claims/<int:claim_id>", methods=["GET"])
@admin_required
def claim_detail(claim_id: int):
    claim = find_claim(claim_id)
    return jsonify({"claim": claim.detail_payload(include_owner=True)})


@admin_bp.route("/claims/update", methods=["POST"])
@admin_required
def update_claim():
    form = ClaimStatusForm().validate_or_raise("Invalid claim update request.")
    result = update_claim_status(
        form.claimId.data,
        normalize_text(form.status.data, 20),
        normalize_text(form.notes.data, 2000),
        current_user.id,
    )
    if not result.success:
        return jsonify({"success": False, "message": result.message}), 404

    notify_claim_status(result.claim)
    return jsonify(
        {
            "success": True,
            "message": result.message,
            "claim": result.claim.detail_payload(include_owner=True),
        }
    )


@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    claim_counts = (
        db.session.query(Claim.user_id, func.count(Claim.id).label("claim_count"))
        .group_by(Claim.user_id)
        .subquery()
    )
    pagination = (
        db.session.query(User, func.coalesce(claim_counts.c.claim_count, 0))
        .outerjoin(claim_counts, claim_counts.c.user_id == User.id)
        .order_by(User.created_at.desc())
        .paginate(page=_page_arg(), per_page=current_app.config.get("ADMIN_CLAIMS_PER_PAGE", 20), error_out=False)
    )
    users = []
    for user, claim_count in pagination.items:
        payload = user.profile_payload()
        payload["claim_count"] = int(claim_count)
        payload["created_at"] = user.created_at.isoformat() if user.created_at else None
        users.append(payload)
    return jsonify({"users": users, "page": pagination.page, "pages": pagination.pages, "total": pagination.total})


@admin_bp.route("/users/credit", methods=["POST"])
@admin_required
def update_credit():
    form = CreditForm().validate_or_raise("User and amount are required.")
    user = set_user_credit(
        normalize_text(form.userId.data, 36),
        normalize_text(form.amount.data, 40),
        normalize_text(form.note.data, 500),
        current_user.id,
    )
    return jsonify({"success": True, "message": "Credit updated successfully", "user": user.profile_payload()})
