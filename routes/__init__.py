"""Blueprint registration and service-level routes."""
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from wtforms import StringField, TextAreaField
from wtforms.validators import DataRequired, Email

from extensions import db
from utils.email_service import relay_contact_message
from utils.errors import ValidationError
from utils.forms import ApiForm
from utils.security import normalize_email, normalize_text
from .admin import admin_bp
from .auth import auth_bp
from .claims import claims_bp

main_bp = Blueprint("main", __name__)


class ContactForm(ApiForm):
    firstName = StringField("First name", validators=[DataRequired()])
    lastName = StringField("Last name", validators=[DataRequired()])
    email = StringField("Email", validators=[DataRequired(), Email(message="Please enter a valid email address.")])
    subject = StringField("Subject", validators=[DataRequired()])
    message = TextAreaField("Message", validators=[DataRequired()])


@main_bp.route("/api/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Health check database probe failed")
        return jsonify({"status": "degraded"}), 503
    return jsonify({"status": "ok"})


@main_bp.route("/api/contact", methods=["POST"])
def contact():
    form = ContactForm()
    if not form.validate_on_submit():
        missing = any(not (field.data or "").strip() for field in form)
        raise ValidationError("All fields are required." if missing else form.email.errors[0])

    first_name = normalize_text(form.firstName.data, 80)
    last_name = normalize_text(form.lastName.data, 80)
    email = normalize_email(form.email.data)
    subject = normalize_text(form.subject.data, 150)
    message = normalize_text(form.message.data, 3000)
    if not (first_name and last_name and email and subject and message):
        raise ValidationError("All fields are required.")

    current_app.logger.info(
        "Contact form submission",
        extra={"contact_email": email, "contact_name": f"{first_name} {last_name}", "subject": subject},
    )
    relay_contact_message(first_name, last_name, email, subject, message)
    return jsonify({"success": True, "message": "Message sent successfully!"})


@main_bp.route("/uploads", defaults={"anything": ""})
@main_bp.route("/uploads/<path:anything>")
def uploads_blocked(anything: str):
    """Stored proofs are only reachable through the authorised proof endpoint."""
    current_app.logger.warning("Direct upload access blocked", extra={"path": request.path})
    return jsonify({"success": False, "message": "Access denied"}), 403


__all__ = ["main_bp", "auth_bp", "claims_bp", "admin_bp"]
