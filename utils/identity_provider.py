"""Thin client for the hosted identity provider (Supabase GoTrue REST API)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from flask import current_app

EXTENSION_KEY = "identity_provider"


class IdentityProviderError(Exception):
    """The provider answered but refused the request (bad credentials, unconfirmed email, ...)."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def is_unconfirmed_email(self) -> bool:
        text = f"{self.code or ''} {self.message or ''}".lower()
        return "confirm" in text or "not verified" in text


class IdentityProviderUnavailable(Exception):
    """Timeout, connection failure or 5xx from the provider."""


class IdentityProviderNotConfigured(Exception):
    """SUPABASE_URL / SUPABASE_ANON_KEY are missing."""


@dataclass
class ExternalIdentity:
    id: str
    email: str
    email_confirmed_at: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def email_confirmed(self) -> bool:
        return bool(self.email_confirmed_at)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ExternalIdentity":
        return cls(
            id=str(payload.get("id") or ""),
            email=(payload.get("email") or "").strip().lower(),
            email_confirmed_at=payload.get("email_confirmed_at") or payload.get("confirmed_at"),
            user_metadata=dict(payload.get("user_metadata") or {}),
        )


@dataclass
class ProviderSession:
    access_token: str
    refresh_token: Optional[str]
    user: ExternalIdentity


class SupabaseAuthClient:
    """Blocking calls with a hard timeout so a hung provider never pins a request."""

    def __init__(self, base_url: str, anon_key: str, timeout: float = 10.0, http: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.http = http or requests.Session()

    def _headers(self, access_token: str | None = None) -> Dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token or self.anon_key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        payload: Dict[str, Any] | None = None,
        params: Dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/auth/v1{path}"
        try:
            response = self.http.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(access_token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise IdentityProviderUnavailable(str(exc)) from exc

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        if response.status_code >= 500:
            raise IdentityProviderUnavailable(f"Identity provider returned HTTP {response.status_code}")
        if response.status_code >= 400:
            message = body.get("msg") or body.get("error_description") or body.get("message") or "Request rejected"
            raise IdentityProviderError(message, status_code=response.status_code, code=body.get("error_code") or body.get("error"))
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _session_from(body: Dict[str, Any]) -> ProviderSession:
        user_payload = body.get("user") or {}
        if not user_payload.get("id"):
            raise IdentityProviderError("Identity provider returned no user")
        return ProviderSession(
            access_token=body.get("access_token") or "",
            refresh_token=body.get("refresh_token"),
            user=ExternalIdentity.from_payload(user_payload),
        )

    def sign_up(self, email: str, password: str, metadata: Dict[str, Any], redirect_to: str | None = None) -> ExternalIdentity:
        params = {"redirect_to": redirect_to} if redirect_to else None
        body = self._request("POST", "/signup", {"email": email, "password": password, "data": metadata}, params=params)
        # With confirmation enabled the user object is returned bare, otherwise inside a session.
        user_payload = body.get("user") if "user" in body else body
        if not user_payload or not user_payload.get("id"):
            raise IdentityProviderError("Unable to create account. Please try again.")
        return ExternalIdentity.from_payload(user_payload)

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        body = self._request("POST", "/token", {"email": email, "password": password}, params={"grant_type": "password"})
        return self._session_from(body)

    def refresh_session(self, refresh_token: str) -> ProviderSession:
        body = self._request("POST", "/token", {"refresh_token": refresh_token}, params={"grant_type": "refresh_token"})
        return self._session_from(body)

    def resend_signup(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        self._request("POST", "/resend", {"type": "signup", "email": email}, params=params)

    def verify_otp(self, token_hash: str, otp_type: str = "signup") -> ExternalIdentity:
        body = self._request("POST", "/verify", {"token_hash": token_hash, "type": otp_type})
        user_payload = body.get("user") or {}
        if not user_payload.get("id"):
            raise IdentityProviderError("Invalid verification link.")
        return ExternalIdentity.from_payload(user_payload)

    def recover(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        self._request("POST", "/recover", {"email": email}, params=params)

    def update_password(self, access_token: str, new_password: str) -> ExternalIdentity:
        body = self._request("PUT", "/user", {"password": new_password}, access_token=access_token)
        return ExternalIdentity.from_payload(body)


def init_identity_provider(app) -> None:
    """Build the provider handle once per process; absent config leaves local-mirror mode."""
    url = app.config.get("SUPABASE_URL")
    key = app.config.get("SUPABASE_ANON_KEY")
    if url and key:
        app.extensions[EXTENSION_KEY] = SupabaseAuthClient(
            url, key, timeout=float(app.config.get("IDENTITY_PROVIDER_TIMEOUT", 10))
        )
    else:
        app.extensions.setdefault(EXTENSION_KEY, None)
        app.logger.info("Identity provider not configured; using local credential store")


def identity_provider_configured() -> bool:
    return current_app.extensions.get(EXTENSION_KEY) is not None


def get_identity_provider():
    client = current_app.extensions.get(EXTENSION_KEY)
    if client is None:
        raise IdentityProviderNotConfigured("Authentication service is not configured.")
    return client
