"""Claim intake, history, and proof retrieval for signed-in users."""
from flask import Blueprint, current_app, jsonify, request, send_file
from flask_login import current_user
from flask_wtf.file import FileField
from wtforms import StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired

from models import CLAIM_TYPES, Claim
from utils.claim_lifecycle import find_claim, get_claim_for_user, submit_claim
from utils.claim_stats import user_summary
from utils.decorators import any_principal_required, user_required
from utils.errors import NotFoundError, ValidationError
from utils.forms import ApiForm
from utils.security import normalize_text, parse_amount
from utils.upload_validator import (
    discard_proof,
    mime_type_for,
    resolve_proof_path,
    store_proof,
    validate_proof_file,
)

claims_bp = Blueprint("claims", __name__, url_prefix="/api")

REQUIRED_MESSAGE = "Claim type, reference, amount, and description are required"


class ClaimForm(ApiForm):
    claim_type = StringField("Claim type", validators=[DataRequired(), AnyOf(CLAIM_TYPES, message="Unknown claim type.")])
    reference = StringField("Reference", validators=[DataRequired()])
    amount = StringField("Amount", validators=[DataRequired()])
    description = TextAreaField("Description", validators=[DataRequired()])
    proof = FileField("Proof")


def _upload_dir() -> str:
    return current_app.config["CLAIM_UPLOAD_FOLDER"]


@claims_bp.route("/submit-claim", methods=["POST"])
@user_required
def submit():
    form = ClaimForm()
    if not form.validate_on_submit():
        missing = any(
            not (getattr(form, name).data or "").strip()
            for name in ("claim_type", "reference", "amount", "description")
        )
        raise ValidationError(REQUIRED_MESSAGE if missing else form.first_error())
    amount = parse_amount(form.amount.data)
    if amount is None:
        raise ValidationError("Please enter a valid amount greater than 0.")

    proof = validate_proof_file(request.files.get("proof"), current_app.config["MAX_PROOF_UPLOAD_BYTES"])
    stored_name = store_proof(proof, _upload_dir())
    try:
        claim = submit_claim(
            current_user.id,
            normalize_text(form.claim_type.data, 80),
            normalize_text(form.reference.data, 120),
            amount,
            normalize_text(form.description.data, 2000),
            stored_name,
        )
    except Exception:
        discard_proof(stored_name, _upload_dir())
        raise

    return jsonify(
        {
            "success": True,
            "message": f"Claim submitted successfully! Claim ID: #{claim.id}",
            "claimId": claim.id,
        }
    ), 201


@claims_bp.route("/dashboard", methods=["GET"])
@user_required
def dashboard():
    user = current_user._get_current_object()
    claims = Claim.query.filter_by(user_id=user.id).order_by(Claim.created_at.desc(), Claim.id.desc()).all()
    return jsonify(
        {
            "user": user.profile_payload(),
            "stats": user_summary(user),
            "claims": [claim.summary_payload() for claim in claims],
        }
    )


@claims_bp.route("/claims/history", methods=["GET"])
@user_required
def claim_history():
    claims = (
        Claim.query.filter_by(user_id=current_user.id)
        .order_by(Claim.created_at.desc(), Claim.id.desc())
        .all()
    )
    return jsonify({"claims": [claim.detail_payload() for claim in claims]})


@claims_bp.route("/claims/<int:claim_id>", methods=["GET"])
@user_required
def claim_detail(claim_id: int):
    claim = get_claim_for_user(claim_id, current_user)
    return jsonify({"claim": claim.detail_payload()})


@claims_bp.route("/claims/<int:claim_id>/proof", methods=["GET"])
@any_principal_required
def claim_proof(claim_id: int):
    """Stream a proof file to its owner or to an admin; the upload folder itself is never served."""
    if current_user.is_admin:
        claim = find_claim(claim_id)
    else:
        claim = get_claim_for_user(claim_id, current_user)

    path = resolve_proof_path(claim.proof_file, _upload_dir()) if claim.proof_file else None
    if path is None:
        raise NotFoundError("Proof file not found.")
    return send_file(
        path,
        mimetype=mime_type_for(claim.proof_file),
        as_attachment=False,
        download_name=f"claim-{claim.id}-proof.{claim.proof_file.rsplit('.', 1)[-1]}",
    )
