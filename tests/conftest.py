"""
Shared fixtures for the refund claims test suite.

Every test gets a fresh application bound to an in-memory SQLite database
(or the PostgreSQL database in TEST_DATABASE_URL), a private upload folder,
and no identity provider unless it asks for the ``identity_provider`` fixture.
"""
import io
import os
import tempfile
import uuid
from decimal import Decimal

# app.py builds a module-level application on import; point it at test settings first.
_SCRATCH = tempfile.mkdtemp(prefix="refund-claims-tests-")
os.environ["FLASK_CONFIG"] = "testing"
os.environ["LOG_DIR"] = os.path.join(_SCRATCH, "logs")
os.environ["CLAIM_UPLOAD_FOLDER"] = os.path.join(_SCRATCH, "uploads")

import pytest
from PIL import Image

from app import create_app
from extensions import db
from models import AdminUser, Claim, User
from utils.credential_store import hash_password
from utils.identity_provider import (
    EXTENSION_KEY,
    ExternalIdentity,
    IdentityProviderError,
    IdentityProviderUnavailable,
    ProviderSession,
)

USER_PASSWORD = "Sup3rSecret!"
ADMIN_PASSWORD = "Adm1nSecret!"


class FakeIdentityProvider:
    """In-process stand-in for the hosted identity provider."""

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.unavailable = False

    def _check(self, name, *args):
        self.calls.append((name,) + args)
        if self.unavailable:
            raise IdentityProviderUnavailable("connection timed out")

    def _identity(self, email: str) -> ExternalIdentity:
        account = self.accounts[email]
        return ExternalIdentity(
            id=account["id"],
            email=email,
            email_confirmed_at="2026-01-01T00:00:00Z" if account["confirmed"] else None,
            user_metadata=dict(account["metadata"]),
        )

    def add_account(self, email, password=USER_PASSWORD, confirmed=True, metadata=None) -> str:
        account_id = str(uuid.uuid4())
        self.accounts[email] = {
            "id": account_id,
            "password": password,
            "confirmed": confirmed,
            "metadata": metadata or {},
        }
        return account_id

    def confirm(self, email):
        self.accounts[email]["confirmed"] = True

    def sign_up(self, email, password, metadata, redirect_to=None):
        self._check("sign_up", email)
        if email in self.accounts:
            raise IdentityProviderError("User already registered", status_code=422, code="user_already_exists")
        self.add_account(email, password, confirmed=False, metadata=metadata)
        return self._identity(email)

    def sign_in_with_password(self, email, password):
        self._check("sign_in_with_password", email)
        account = self.accounts.get(email)
        if account is None or account["password"] != password:
            raise IdentityProviderError("Invalid login credentials", status_code=400, code="invalid_credentials")
        if not account["confirmed"]:
            raise IdentityProviderError("Email not confirmed", status_code=400, code="email_not_confirmed")
        return ProviderSession(access_token=f"access:{email}", refresh_token=f"refresh:{email}", user=self._identity(email))

    def refresh_session(self, refresh_token):
        self._check("refresh_session", refresh_token)
        email = refresh_token.split(":", 1)[-1]
        if email not in self.accounts:
            raise IdentityProviderError("Invalid Refresh Token", status_code=400)
        return ProviderSession(access_token=f"access:{email}", refresh_token=refresh_token, user=self._identity(email))

    def resend_signup(self, email, redirect_to=None):
        self._check("resend_signup", email)

    def verify_otp(self, token_hash, otp_type="signup"):
        self._check("verify_otp", token_hash, otp_type)
        email = token_hash.split(":", 1)[-1]
        if not token_hash.startswith("otp:") or email not in self.accounts:
            raise IdentityProviderError("Token has expired or is invalid", status_code=403, code="otp_expired")
        self.confirm(email)
        return self._identity(email)

    def recover(self, email, redirect_to=None):
        self._check("recover", email)

    def update_password(self, access_token, new_password):
        self._check("update_password", access_token)
        email = access_token.split(":", 1)[-1]
        if not access_token.startswith("access:") or email not in self.accounts:
            raise IdentityProviderError("Invalid JWT", status_code=401, code="bad_jwt")
        self.accounts[email]["password"] = new_password
        return self._identity(email)


@pytest.fixture
def app(tmp_path):
    application = create_app("testing")
    application.config.update(CLAIM_UPLOAD_FOLDER=str(tmp_path / "uploads"))
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def identity_provider(app):
    fake = FakeIdentityProvider()
    app.extensions[EXTENSION_KEY] = fake
    return fake


def make_user(app, email="alice@refunds.io", password=USER_PASSWORD, name="Alice Doe", **fields) -> str:
    with app.app_context():
        user = User(
            name=name,
            email=email,
            password_hash=fields.pop("password_hash", None) or hash_password(password),
            email_verified=fields.pop("email_verified", True),
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user.id


def make_admin(app, username="reviewer", password=ADMIN_PASSWORD, password_hash=None) -> int:
    with app.app_context():
        admin = AdminUser(username=username, password_hash=password_hash or hash_password(password))
        db.session.add(admin)
        db.session.commit()
        return admin.id


def make_claim(app, user_id, amount="100.00", status="Submitted", claim_type="Flight", proof_file=None) -> int:
    with app.app_context():
        claim = Claim(
            user_id=user_id,
            claim_type=claim_type,
            reference_number=f"REF-{uuid.uuid4().hex[:8]}",
            amount=Decimal(amount),
            description="Charged twice for the same booking",
            status=status,
            proof_file=proof_file,
        )
        db.session.add(claim)
        db.session.commit()
        return claim.id


def png_bytes(size=(4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def pdf_bytes(padding: int = 64) -> bytes:
    return b"%PDF-1.4\n" + b"0" * padding + b"\n%%EOF\n"


def fetch_csrf(client) -> str:
    response = client.get("/api/csrf-token")
    assert response.status_code == 200
    return response.get_json()["csrfToken"]


def login(client, email="alice@refunds.io", password=USER_PASSWORD) -> str:
    response = client.post("/api/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return fetch_csrf(client)


def admin_login(client, username="reviewer", password=ADMIN_PASSWORD) -> str:
    response = client.post("/api/admin/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.get_json()
    return fetch_csrf(client)


def session_cookie(client, app):
    return client.get_cookie(app.config["SESSION_COOKIE_NAME"])
