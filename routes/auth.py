"""Registration, sign-in, session and account endpoints for end users."""
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request, session
from flask_login import current_user, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import IntegrityError
from wtforms import PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional

from extensions import csrf, db
from models import User
from utils.audit import log_action
from utils.credential_store import (
    hash_password,
    upsert_local_user_from_identity,
    verify_local_user_credential,
    verify_password,
)
from utils.decorators import user_required
from utils.errors import AuthenticationError, AuthorizationError, ValidationError
from utils.forms import ApiForm
from utils.identity_provider import (
    IdentityProviderError,
    get_identity_provider,
    identity_provider_configured,
)
from utils.security import normalize_email, normalize_text, password_meets_policy, rotate_csrf_token
from utils.session_store import destroy_session

auth_bp = Blueprint("auth", __name__, url_prefix="/api")

VERIFY_MESSAGE = "Please verify your email before logging in."


class RegistrationForm(ApiForm):
    name = StringField("Name", validators=[DataRequired()])
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=320)])
    password = PasswordField("Password", validators=[DataRequired()])
    phone = StringField("Phone", validators=[Optional()])


class LoginForm(ApiForm):
    email = StringField("Email", validators=[DataRequired()])
    password = PasswordField("Password", validators=[DataRequired()])


class EmailOnlyForm(ApiForm):
    email = StringField("Email", validators=[DataRequired()])


class ResetPasswordForm(ApiForm):
    accessToken = StringField("Access token", validators=[Optional()])
    refreshToken = StringField("Refresh token", validators=[Optional()])
    newPassword = PasswordField("New password", validators=[Optional()])


class ChangePasswordForm(ApiForm):
    currentPassword = PasswordField("Current password", validators=[DataRequired()])
    newPassword = PasswordField("New password", validators=[DataRequired()])


class ProfileForm(ApiForm):
    name = StringField("Name", validators=[DataRequired()])
    phone = StringField("Phone", validators=[Optional()])


def establish_session(principal) -> str:
    """Bind exactly one principal to a fresh session id and anti-forgery token."""
    session.clear()
    if hasattr(session, "regenerate"):
        session.regenerate()
    login_user(principal)
    session.permanent = True
    principal.last_login_at = datetime.utcnow()
    db.session.add(principal)
    return rotate_csrf_token()


def _redirect_url(path: str) -> str:
    base = current_app.config.get("APP_BASE_URL") or request.host_url.rstrip("/")
    return f"{base}{path}"


def _require_password_policy(password) -> None:
    ok, reason = password_meets_policy(password)
    if not ok:
        raise ValidationError(reason)


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return jsonify({"success": True, "csrfToken": generate_csrf()})


@auth_bp.route("/session", methods=["GET"])
def session_info():
    if not current_user.is_authenticated:
        return jsonify({"authenticated": False, "principal": None})
    display = current_user.username if current_user.is_admin else current_user.name
    return jsonify({"authenticated": True, "principal": current_user.principal_type, "name": display})


@auth_bp.route("/register", methods=["POST"])
@csrf.exempt
def register():
    form = RegistrationForm().validate_or_raise("All fields are required")
    name = normalize_text(form.name.data, 100)
    email = normalize_email(form.email.data)
    phone = normalize_text(form.phone.data, 30) or None
    password = form.password.data
    if not name or not email:
        raise ValidationError("All fields are required")
    _require_password_policy(password)

    if identity_provider_configured():
        try:
            identity = get_identity_provider().sign_up(
                email,
                password,
                {"full_name": name, "phone": phone},
                redirect_to=_redirect_url("/verify-email.html"),
            )
        except IdentityProviderError as exc:
            raise ValidationError(exc.message or "Registration failed") from exc
        user = upsert_local_user_from_identity(identity, name, phone)
        requires_verification = not identity.email_confirmed
    else:
        if User.query.filter(db.func.lower(User.email) == email).first():
            raise ValidationError("An account with this email already exists.")
        user = User(name=name, email=email, phone=phone, password_hash=hash_password(password), email_verified=True)
        db.session.add(user)
        requires_verification = False

    try:
        db.session.flush()
        log_action("REGISTER", user)
        if not requires_verification:
            establish_session(user)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValidationError("Unable to register with the provided details. Please try again.") from exc

    return jsonify(
        {
            "success": True,
            "requiresVerification": requires_verification,
            "email": email,
            "message": (
                "Account created. Please check your email to verify your account."
                if requires_verification
                else "Account created successfully!"
            ),
        }
    ), 201


def _login_failed(email: str):
    log_action("LOGIN_FAILED", None, context=email)
    db.session.commit()
    raise AuthenticationError("Invalid email or password")


def _verification_required(email: str):
    return jsonify({"success": False, "requiresVerification": True, "email": email, "message": VERIFY_MESSAGE}), 403


@auth_bp.route("/login", methods=["POST"])
@csrf.exempt
def login():
    form = LoginForm().validate_or_raise("Email and password are required")
    email = normalize_email(form.email.data)
    password = form.password.data

    if identity_provider_configured():
        try:
            provider_session = get_identity_provider().sign_in_with_password(email, password)
        except IdentityProviderError as exc:
            if exc.is_unconfirmed_email:
                return _verification_required(email)
            return _login_failed(email)
        if not provider_session.user.email_confirmed:
            return _verification_required(email)
        user = upsert_local_user_from_identity(provider_session.user)
    else:
        user = verify_local_user_credential(email, password)
        if user is None:
            return _login_failed(email)

    establish_session(user)
    log_action("LOGIN", user)
    db.session.commit()
    return jsonify({"success": True, "message": "Login successful!"})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    principal = current_user._get_current_object() if current_user.is_authenticated else None
    logout_user()
    destroy_session(session)
    if principal is not None:
        log_action("LOGOUT", principal)
        db.session.commit()
    return jsonify({"success": True, "message": "Logged out successfully"})


@auth_bp.route("/resend-verification", methods=["POST"])
@csrf.exempt
def resend_verification():
    form = EmailOnlyForm().validate_or_raise("Email is required")
    email = normalize_email(form.email.data)
    try:
        get_identity_provider().resend_signup(email, redirect_to=_redirect_url("/verify-email.html"))
    except IdentityProviderError as exc:
        raise ValidationError(exc.message or "Failed to resend verification email.") from exc
    return jsonify({"success": True, "message": "Verification email sent successfully."})


@auth_bp.route("/verify-email", methods=["GET"])
def verify_email():
    token_hash = normalize_text(request.args.get("token_hash"), 5000)
    otp_type = normalize_text(request.args.get("type"), 40) or "signup"
    if not token_hash:
        raise ValidationError("Verification token is required.")
    try:
        identity = get_identity_provider().verify_otp(token_hash, otp_type)
    except IdentityProviderError as exc:
        raise ValidationError(exc.message or "Invalid verification link.") from exc

    user = upsert_local_user_from_identity(identity)
    establish_session(user)
    log_action("VERIFY_EMAIL", user)
    db.session.commit()
    return jsonify({"success": True, "message": "Email verified successfully."})


@auth_bp.route("/forgot-password", methods=["POST"])
@csrf.exempt
def forgot_password():
    form = EmailOnlyForm().validate_or_raise("Email is required.")
    email = normalize_email(form.email.data)
    try:
        get_identity_provider().recover(email, redirect_to=_redirect_url("/reset-password.html"))
    except IdentityProviderError as exc:
        raise ValidationError(exc.message or "Unable to send reset email.") from exc
    return jsonify({"success": True, "message": "If an account exists with that email, a reset link has been sent."})


@auth_bp.route("/reset-password", methods=["POST"])
@csrf.exempt
def reset_password():
    form = ResetPasswordForm().validate_or_raise()
    access_token = normalize_text(form.accessToken.data, 5000)
    refresh_token = normalize_text(form.refreshToken.data, 5000)
    new_password = form.newPassword.data
    ok, reason = password_meets_policy(new_password)
    if not access_token or not refresh_token or not ok:
        raise ValidationError(reason or "Invalid or expired reset session. Please request a new reset link.")

    provider = get_identity_provider()
    try:
        try:
            identity = provider.update_password(access_token, new_password)
        except IdentityProviderError as exc:
            if exc.status_code != 401:
                raise
            refreshed = provider.refresh_session(refresh_token)
            identity = provider.update_password(refreshed.access_token, new_password)
    except IdentityProviderError as exc:
        raise ValidationError("Reset link is invalid or has expired. Please request a new one.") from exc

    user = upsert_local_user_from_identity(identity)
    user.password_hash = hash_password(new_password)
    establish_session(user)
    log_action("PASSWORD_RESET", user)
    db.session.commit()
    return jsonify({"success": True, "message": "Password reset successful."})


@auth_bp.route("/change-password", methods=["POST"])
@user_required
def change_password():
    form = ChangePasswordForm().validate_or_raise("Current and new password are required.")
    _require_password_policy(form.newPassword.data)
    user = current_user._get_current_object()

    if identity_provider_configured():
        provider = get_identity_provider()
        try:
            provider_session = provider.sign_in_with_password(user.email, form.currentPassword.data)
        except IdentityProviderError as exc:
            raise AuthorizationError("Current password is incorrect") from exc
        try:
            provider.update_password(provider_session.access_token, form.newPassword.data)
        except IdentityProviderError as exc:
            raise ValidationError(exc.message or "Failed to update password") from exc
    elif not verify_password(user.password_hash, form.currentPassword.data):
        raise AuthorizationError("Current password is incorrect")

    user.password_hash = hash_password(form.newPassword.data)
    log_action("PASSWORD_CHANGED", user)
    db.session.commit()
    return jsonify({"success": True, "message": "Password changed successfully"})


@auth_bp.route("/profile", methods=["GET"])
@user_required
def profile():
    return jsonify({"user": current_user.profile_payload()})


@auth_bp.route("/profile/update", methods=["POST"])
@user_required
def update_profile():
    form = ProfileForm().validate_or_raise("Name is required.")
    name = normalize_text(form.name.data, 100)
    if not name:
        raise ValidationError("Name is required.")
    user = current_user._get_current_object()
    user.name = name
    user.phone = normalize_text(form.phone.data, 30) or None
    db.session.commit()
    return jsonify({"success": True, "message": "Profile updated successfully", "user": user.profile_payload()})
