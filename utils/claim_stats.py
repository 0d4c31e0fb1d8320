"""Read-only dashboard aggregates over the claims table."""
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import case, func

from extensions import db
from models import PENDING_STATUSES, SUCCESS_STATUSES, Claim, User

ZERO = Decimal("0.00")


def success_rate(success_count: int, total: int) -> int:
    """Whole-number percentage, half rounded up; 0 when there are no claims."""
    if not total:
        return 0
    ratio = Decimal(success_count) * 100 / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_money(value) -> Decimal:
    return Decimal(value if value is not None else 0).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _aggregate_columns():
    return (
        func.count(Claim.id),
        func.count(case((Claim.status.in_(PENDING_STATUSES), 1))),
        func.count(case((Claim.status.in_(SUCCESS_STATUSES), 1))),
        func.coalesce(func.sum(case((Claim.status.in_(SUCCESS_STATUSES), Claim.amount), else_=0)), 0),
    )


def user_summary(user: User) -> dict:
    total, pending, success, success_value = (
        db.session.query(*_aggregate_columns()).filter(Claim.user_id == user.id).one()
    )
    credit = _as_money(user.admin_credit)
    return {
        "active_claims": int(total),
        "pending_claims": int(pending),
        "success_count": int(success),
        "success_rate": success_rate(int(success), int(total)),
        "admin_credit": float(credit),
        "total_value": float(_as_money(success_value) + credit),
    }


def admin_summary() -> dict:
    total, pending, success, success_value = db.session.query(*_aggregate_columns()).one()
    per_status = dict(
        db.session.query(Claim.status, func.count(Claim.id)).group_by(Claim.status).all()
    )
    all_value = db.session.query(func.coalesce(func.sum(Claim.amount), 0)).scalar()
    total_users, total_credit = db.session.query(
        func.count(User.id), func.coalesce(func.sum(User.admin_credit), 0)
    ).one()
    credit = _as_money(total_credit)
    return {
        "total_claims": int(total),
        "pending_claims": int(pending),
        "approved_claims": int(per_status.get("Approved", 0)),
        "rejected_claims": int(per_status.get("Rejected", 0)),
        "refunded_claims": int(per_status.get("Refunded", 0)),
        "in_review_claims": int(per_status.get("In Review", 0)),
        "success_count": int(success),
        "success_rate": success_rate(int(success), int(total)),
        "success_value": float(_as_money(success_value) + credit),
        "total_admin_credit": float(credit),
        "total_value": float(_as_money(all_value)),
        "total_users": int(total_users),
    }
