"""Claim submission and the admin status-update transaction.

Any status may move to any other status. There is deliberately no transition
graph (for example ``Refunded`` back to ``Submitted`` is accepted); tightening
that is a product decision. What is enforced is the vocabulary and that the
status column and ``claim_history`` never diverge.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import CLAIM_STATUSES, Claim, ClaimHistory, User
from utils.errors import InfrastructureError, NotFoundError, ValidationError
from utils.security import parse_amount

# Claim ids are SERIAL columns.
MAX_CLAIM_ID = 2**31 - 1


def claim_id_in_range(claim_id: int) -> bool:
    return 0 < claim_id <= MAX_CLAIM_ID


@dataclass
class StatusUpdateResult:
    success: bool
    message: str
    claim: Optional[Claim] = None
    history: Optional[ClaimHistory] = None


def submit_claim(
    user_id: str,
    claim_type: str,
    reference: str,
    amount,
    description: str,
    proof_file: str | None,
    require_proof: bool = True,
) -> Claim:
    """Insert a new claim in ``Submitted``. History starts at the first admin transition."""
    if not claim_type or not reference or not description or amount is None or amount == "":
        raise ValidationError("Claim type, reference, amount, and description are required")
    parsed_amount = amount if isinstance(amount, Decimal) else parse_amount(amount)
    if parsed_amount is None or parsed_amount <= 0:
        raise ValidationError("Please enter a valid amount greater than 0.")
    if require_proof and not proof_file:
        raise ValidationError("Please upload proof of your claim.")
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    claim = Claim(
        user_id=user_id,
        claim_type=claim_type,
        reference_number=reference,
        amount=parsed_amount,
        proof_file=proof_file,
        description=description,
        status="Submitted",
    )
    try:
        db.session.add(claim)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Database error while saving claim", extra={"user_id": user_id})
        raise InfrastructureError("claim insert failed") from exc

    current_app.logger.info(
        "claim_submitted",
        extra={"claim_id": claim.id, "user_id": user_id, "claim_type": claim_type},
    )
    return claim


def _rollback_quietly(claim_id) -> None:
    try:
        db.session.rollback()
    except SQLAlchemyError:
        current_app.logger.exception("Claim update rollback error", extra={"claim_id": claim_id})


def update_claim_status(claim_id, new_status: str, notes: str | None, admin_id: int) -> StatusUpdateResult:
    """Set a claim's status and notes and append the matching history row, atomically.

    The claim row is read ``FOR UPDATE`` so concurrent updates to one claim
    serialise; the later writer records the earlier writer's committed status
    as its ``old_status``.
    """
    if new_status not in CLAIM_STATUSES:
        raise ValidationError("Invalid claim update request.")
    try:
        claim_id = int(claim_id)
    except (TypeError, ValueError):
        raise ValidationError("Invalid claim update request.") from None
    if claim_id <= 0:
        raise ValidationError("Invalid claim update request.")
    if not claim_id_in_range(claim_id):
        return StatusUpdateResult(False, "Claim not found.")

    notes = notes or None
    try:
        claim = (
            db.session.query(Claim)
            .filter(Claim.id == claim_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if claim is None:
            db.session.rollback()
            return StatusUpdateResult(False, "Claim not found.")

        old_status = claim.status
        claim.status = new_status
        claim.admin_notes = notes
        entry = ClaimHistory(
            claim_id=claim.id,
            old_status=old_status,
            new_status=new_status,
            changed_by=admin_id,
            notes=notes,
        )
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError as exc:
        _rollback_quietly(claim_id)
        current_app.logger.exception("Update claim error", extra={"claim_id": claim_id, "admin_id": admin_id})
        raise InfrastructureError("claim status transaction failed") from exc

    current_app.logger.info(
        "claim_status_updated",
        extra={"claim_id": claim_id, "old_status": old_status, "new_status": new_status, "admin_id": admin_id},
    )
    return StatusUpdateResult(True, "Claim updated successfully", claim=claim, history=entry)


def get_claim_for_user(claim_id, user: User) -> Claim:
    try:
        claim_id = int(claim_id)
    except (TypeError, ValueError):
        raise NotFoundError("Claim not found.") from None
    if not claim_id_in_range(claim_id):
        raise NotFoundError("Claim not found.")
    claim = Claim.query.filter_by(id=claim_id, user_id=user.id).first()
    if claim is None:
        raise NotFoundError("Claim not found.")
    return claim


def find_claim(claim_id: int) -> Claim:
    """Any claim by id, for admin views."""
    claim = db.session.get(Claim, claim_id) if claim_id_in_range(claim_id) else None
    if claim is None:
        raise NotFoundError("Claim not found.")
    return claim
