from decimal import Decimal

import pytest

from conftest import make_claim, make_user
from extensions import db
from models import User
from utils.claim_stats import admin_summary, success_rate, user_summary


@pytest.mark.parametrize(
    "success, total, expected",
    [(0, 0, 0), (2, 4, 50), (1, 3, 33), (2, 3, 67), (1, 8, 13), (3, 3, 100)],
)
def test_success_rate_rounds_half_up(success, total, expected):
    assert success_rate(success, total) == expected


def test_user_with_no_claims_has_zero_rate(app):
    user_id = make_user(app)
    with app.app_context():
        stats = user_summary(db.session.get(User, user_id))
    assert stats["active_claims"] == 0
    assert stats["success_rate"] == 0
    assert stats["total_value"] == 0.0


def test_user_summary_counts_success_amounts_and_credit(app):
    user_id = make_user(app, admin_credit=Decimal("10.00"))
    make_claim(app, user_id, amount="100.00", status="Approved")
    make_claim(app, user_id, amount="50.00", status="Refunded")
    make_claim(app, user_id, amount="30.00", status="Rejected")
    make_claim(app, user_id, amount="20.00", status="In Review")
    other_id = make_user(app, email="other@refunds.io")
    make_claim(app, other_id, amount="999.00", status="Approved")

    with app.app_context():
        stats = user_summary(db.session.get(User, user_id))

    assert stats == {
        "active_claims": 4,
        "pending_claims": 1,
        "success_count": 2,
        "success_rate": 50,
        "admin_credit": 10.0,
        "total_value": 160.0,
    }


def test_admin_summary_covers_every_status(app):
    alice = make_user(app, admin_credit=Decimal("5.50"))
    bob = make_user(app, email="bob@refunds.io")
    make_claim(app, alice, amount="100.00", status="Approved")
    make_claim(app, alice, amount="40.00", status="Submitted")
    make_claim(app, bob, amount="60.00", status="In Review")
    make_claim(app, bob, amount="25.00", status="Refunded")
    make_claim(app, bob, amount="15.00", status="Rejected")

    with app.app_context():
        stats = admin_summary()

    assert stats["total_claims"] == 5
    assert stats["pending_claims"] == 2
    assert stats["approved_claims"] == 1
    assert stats["refunded_claims"] == 1
    assert stats["rejected_claims"] == 1
    assert stats["in_review_claims"] == 1
    assert stats["success_count"] == 2
    assert stats["success_rate"] == 40
    assert stats["success_value"] == 130.5
    assert stats["total_admin_credit"] == 5.5
    assert stats["total_value"] == 240.0
    assert stats["total_users"] == 2
