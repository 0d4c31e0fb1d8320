"""Relational schema for users, admins, claims, the claim audit trail, and server-side sessions."""
import uuid
from datetime import datetime
from decimal import Decimal

from flask_login import UserMixin

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


CLAIM_TYPES: tuple[str, ...] = (
	"Flight",
	"Subscription",
	"Purchase",
	"Bank Fee",
	"Other",
)

CLAIM_STATUSES: tuple[str, ...] = (
	"Submitted",
	"In Review",
	"Approved",
	"Rejected",
	"Refunded",
)

PENDING_STATUSES: tuple[str, ...] = ("Submitted", "In Review")
SUCCESS_STATUSES: tuple[str, ...] = ("Approved", "Refunded")

USER_PRINCIPAL = "user"
ADMIN_PRINCIPAL = "admin"


def _money(value) -> float:
	return float(value if value is not None else Decimal("0"))


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	name = db.Column(db.String(100), nullable=False)
	email = db.Column(db.String(320), unique=True, nullable=False, index=True)
	# Null when the external identity provider owns the credential.
	password_hash = db.Column(db.String(255), nullable=True)
	phone = db.Column(db.String(30), nullable=True)
	email_verified = db.Column(db.Boolean, default=False, nullable=False)
	external_user_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
	admin_credit = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
	admin_credit_note = db.Column(db.Text, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	claims = db.relationship("Claim", back_populates="user", lazy="dynamic")

	principal_type = USER_PRINCIPAL

	def get_id(self) -> str:
		return f"{USER_PRINCIPAL}:{self.id}"

	@property
	def is_admin(self) -> bool:
		return False

	def profile_payload(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"email": self.email,
			"phone": self.phone,
			"email_verified": self.email_verified,
			"admin_credit": _money(self.admin_credit),
			"admin_credit_note": self.admin_credit_note,
		}


class AdminUser(UserMixin, db.Model):
	__tablename__ = "admin_users"

	id = db.Column(db.Integer, primary_key=True)
	username = db.Column(db.String(80), unique=True, nullable=False, index=True)
	password_hash = db.Column(db.String(255), nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	principal_type = ADMIN_PRINCIPAL

	def get_id(self) -> str:
		return f"{ADMIN_PRINCIPAL}:{self.id}"

	@property
	def is_admin(self) -> bool:
		return True


class Claim(db.Model):
	__tablename__ = "claims"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
	# Type vocabulary is enforced by the intake form, not the schema.
	claim_type = db.Column(db.String(80), nullable=False, index=True)
	reference_number = db.Column(db.String(120), nullable=True)
	amount = db.Column(db.Numeric(12, 2), nullable=False)
	proof_file = db.Column(db.String(255), nullable=True)
	description = db.Column(db.Text, nullable=True)
	status = db.Column(db.String(20), nullable=False, default="Submitted", index=True)
	admin_notes = db.Column(db.Text, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(
		db.DateTime,
		default=datetime.utcnow,
		onupdate=datetime.utcnow,
		nullable=False,
	)

	__table_args__ = (
		db.CheckConstraint("amount > 0", name="ck_claim_amount_positive"),
		db.CheckConstraint(
			"status IN ('Submitted','In Review','Approved','Rejected','Refunded')",
			name="ck_claim_status_valid",
		),
		db.Index("ix_claims_user_created", "user_id", "created_at"),
	)

	user = db.relationship("User", back_populates="claims")
	history = db.relationship(
		"ClaimHistory",
		back_populates="claim",
		order_by="ClaimHistory.id",
		lazy="select",
	)

	def summary_payload(self) -> dict:
		return {
			"id": self.id,
			"claim_type": self.claim_type,
			"reference_number": self.reference_number,
			"amount": _money(self.amount),
			"status": self.status,
			"has_proof": bool(self.proof_file),
			"created_at": self.created_at.isoformat() if self.created_at else None,
			"updated_at": self.updated_at.isoformat() if self.updated_at else None,
		}

	def detail_payload(self, include_owner: bool = False) -> dict:
		payload = self.summary_payload()
		payload.update(
			{
				"description": self.description,
				"admin_notes": self.admin_notes,
				"history": [entry.payload() for entry in self.history],
			}
		)
		if include_owner and self.user:
			payload["user_id"] = self.user.id
			payload["user_name"] = self.user.name
			payload["user_email"] = self.user.email
		return payload


class ClaimHistory(db.Model):
	__tablename__ = "claim_history"

	id = db.Column(db.Integer, primary_key=True)
	claim_id = db.Column(db.Integer, db.ForeignKey("claims.id", ondelete="RESTRICT"), nullable=False, index=True)
	old_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=False)
	changed_by = db.Column(db.Integer, db.ForeignKey("admin_users.id"), nullable=True)
	notes = db.Column(db.Text, nullable=True)
	changed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(
			"new_status IN ('Submitted','In Review','Approved','Rejected','Refunded')",
			name="ck_claim_history_status_valid",
		),
	)

	claim = db.relationship("Claim", back_populates="history")
	actor = db.relationship("AdminUser")

	def payload(self) -> dict:
		return {
			"id": self.id,
			"old_status": self.old_status,
			"new_status": self.new_status,
			"changed_by": self.actor.username if self.actor else None,
			"notes": self.notes,
			"changed_at": self.changed_at.isoformat() if self.changed_at else None,
		}


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	principal = db.Column(db.String(64), nullable=True, index=True)
	action_type = db.Column(db.String(50), nullable=False)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	context = db.Column(db.String(255), nullable=True)
	timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)


class ServerSession(db.Model):
	__tablename__ = "session"

	sid = db.Column(db.String(255), primary_key=True)
	sess = db.Column(db.Text, nullable=False)
	expire = db.Column(db.DateTime, nullable=False, index=True)
