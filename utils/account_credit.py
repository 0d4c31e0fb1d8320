"""Admin-granted account credit.

The credit is a single overwritable amount per user, not a ledger: setting it
replaces the previous value and note, and earlier values are not retained.
"""
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import User
from utils.errors import InfrastructureError, NotFoundError, ValidationError
from utils.security import parse_amount


def set_user_credit(user_id: str, amount, note: str | None, admin_id: int) -> User:
    parsed = parse_amount(amount, allow_zero=True)
    if parsed is None:
        raise ValidationError("Credit amount must be a number of zero or more.")
    if not user_id:
        raise ValidationError("A user is required.")

    try:
        user = (
            db.session.query(User)
            .filter(User.id == str(user_id))
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if user is None:
            db.session.rollback()
            raise NotFoundError("User not found.")
        previous = user.admin_credit
        user.admin_credit = parsed
        user.admin_credit_note = note or None
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Admin credit update failed", extra={"user_id": user_id, "admin_id": admin_id})
        raise InfrastructureError("credit update failed") from exc

    current_app.logger.info(
        "admin_credit_set",
        extra={"user_id": user.id, "admin_id": admin_id, "previous": str(previous), "amount": str(parsed)},
    )
    return user
