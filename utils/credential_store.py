"""Credential hashing/verification and the local mirror of externally managed identities."""
import hmac
import re
import uuid
from datetime import datetime

import bcrypt
from flask import current_app
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db
from models import AdminUser, User
from utils.identity_provider import ExternalIdentity

_BCRYPT_PREFIX = re.compile(r"^\$2[aby]\$")
_WERKZEUG_METHODS: tuple[str, ...] = ("pbkdf2:", "scrypt:")


def hash_password(password: str) -> str:
    return generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)


def normalize_bcrypt_hash(stored: str) -> str:
    """PHP wrote ``$2y$`` hashes; the bcrypt library only accepts ``$2a$``/``$2b$``."""
    if stored.startswith("$2y$"):
        return "$2b$" + stored[4:]
    return stored


def is_legacy_plaintext(stored: str | None) -> bool:
    if not stored:
        return False
    return not (_BCRYPT_PREFIX.match(stored) or stored.startswith(_WERKZEUG_METHODS))


def verify_password(stored: str | None, candidate: str | None) -> bool:
    if not stored or not candidate:
        return False
    if _BCRYPT_PREFIX.match(stored):
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), normalize_bcrypt_hash(stored).encode("utf-8"))
        except ValueError:
            current_app.logger.warning("Malformed bcrypt hash encountered")
            return False
    if stored.startswith(_WERKZEUG_METHODS):
        return check_password_hash(stored, candidate)
    # Migration debt: records created before hashing was introduced.
    if not current_app.config.get("ALLOW_LEGACY_PLAINTEXT_PASSWORDS", False):
        return False
    return hmac.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))


def _verify_and_upgrade(record, candidate: str) -> bool:
    stored = record.password_hash
    if not verify_password(stored, candidate):
        return False
    if is_legacy_plaintext(stored):
        record.password_hash = hash_password(candidate)
        db.session.add(record)
        current_app.logger.warning(
            "Legacy plaintext credential upgraded to hash",
            extra={"principal": record.get_id()},
        )
    return True


def verify_admin_credential(username: str, password: str) -> AdminUser | None:
    admin = AdminUser.query.filter_by(username=username).first()
    if not admin:
        # Burn comparable time so response latency does not reveal unknown usernames.
        check_password_hash(hash_password("timing-equaliser"), password or "")
        return None
    return admin if _verify_and_upgrade(admin, password) else None


def verify_local_user_credential(email: str, password: str) -> User | None:
    user = User.query.filter(db.func.lower(User.email) == email.lower()).first()
    if not user or not user.password_hash:
        return None
    return user if _verify_and_upgrade(user, password) else None


def upsert_local_user_from_identity(
    identity: ExternalIdentity,
    fallback_name: str | None = None,
    fallback_phone: str | None = None,
) -> User:
    """Reconcile a provider-authenticated identity with the local ``users`` mirror.

    Matching is by external id first, then by email. Name and phone are only
    filled in when the local record has none; the verified flag always follows
    the provider. New records receive a random unusable credential because the
    provider is the sole authority for them. Caller commits.
    """
    metadata = identity.user_metadata or {}
    email = identity.email
    name = fallback_name or metadata.get("full_name") or email.split("@")[0]
    phone = fallback_phone or metadata.get("phone") or None

    user = None
    if identity.id:
        user = User.query.filter_by(external_user_id=identity.id).first()
    if user is None and email:
        user = User.query.filter(db.func.lower(User.email) == email).first()

    if user is not None:
        if user.external_user_id != identity.id:
            user.external_user_id = identity.id
        if email and user.email != email:
            user.email = email
        if not user.name:
            user.name = name
        if not user.phone and phone:
            user.phone = phone
        if user.email_verified != identity.email_confirmed:
            user.email_verified = identity.email_confirmed
        db.session.add(user)
        db.session.flush()
        return user

    user = User(
        name=name,
        email=email,
        phone=phone,
        email_verified=identity.email_confirmed,
        external_user_id=identity.id or None,
        password_hash=hash_password(uuid.uuid4().hex + uuid.uuid4().hex),
        created_at=datetime.utcnow(),
    )
    db.session.add(user)
    db.session.flush()
    current_app.logger.info("Local user mirrored from identity provider", extra={"user_id": user.id})
    return user
