"""Security helpers for headers, input normalisation, secrets and CSRF tokens."""
import html
import logging
import secrets
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import bleach
from flask import current_app, g, request, session
from flask_wtf.csrf import generate_csrf

WEAK_SECRET_MARKERS: tuple[str, ...] = (
    "replace-with-long-random-secret",
    "change-in-production",
    "change-me",
    "secret-key",
)
MIN_SECRET_LENGTH = 32
CENTS = Decimal("0.01")
# Upper bound of a NUMERIC(12, 2) column.
MAX_AMOUNT = Decimal("10000000000")


def apply_security_headers(response, force_https: bool = False):
    """Headers for a JSON API that never frames or sniffs its own responses."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'self'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains")
    return response


def check_session_secret(secret: str | None, production: bool, logger: logging.Logger) -> None:
    """Refuse weak secrets in production, warn about them anywhere else."""
    value = secret or ""
    too_short = len(value) < MIN_SECRET_LENGTH
    looks_weak = any(marker in value.lower() for marker in WEAK_SECRET_MARKERS)
    if not (too_short or looks_weak):
        return
    if production:
        raise RuntimeError(
            f"SESSION_SECRET is too weak. Use a random secret at least {MIN_SECRET_LENGTH} characters long."
        )
    logger.warning(
        "SESSION_SECRET looks weak; use a random secret before deploying",
        extra={"length": len(value), "placeholder": looks_weak},
    )


def normalize_text(value, max_length: int = 5000) -> str:
    """Trim, strip markup and truncate free text coming from a client."""
    if value is None:
        return ""
    # bleach entity-encodes what it keeps; stored text is plain, not HTML.
    cleaned = html.unescape(bleach.clean(str(value), tags=[], attributes={}, strip=True)).strip()
    return cleaned[:max_length]


def normalize_email(value) -> str:
    return normalize_text(value, 320).lower()


def parse_amount(value, allow_zero: bool = False) -> Decimal | None:
    """Parse a monetary amount to two decimals; ``None`` when malformed or out of range."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
        if not parsed.is_finite() or parsed >= MAX_AMOUNT:
            return None
        parsed = parsed.quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None
    if parsed < 0 or (parsed == 0 and not allow_zero):
        return None
    return parsed


def password_meets_policy(password) -> tuple[bool, str | None]:
    min_length = int(current_app.config.get("PASSWORD_MIN_LENGTH", 8))
    if not isinstance(password, str) or len(password) < min_length:
        return False, f"Password must be at least {min_length} characters"
    return True, None


def generate_token(length: int = 32) -> str:
    return secrets.token_urlsafe(length)


def rotate_csrf_token() -> str:
    """Drop the session's anti-forgery secret and issue a fresh one."""
    field_name = current_app.config.get("WTF_CSRF_FIELD_NAME", "csrf_token")
    session.pop(field_name, None)
    g.pop(field_name, None)
    return generate_csrf()


def client_fingerprint() -> dict:
    return {
        "ip_address": request.remote_addr,
        "user_agent": (request.headers.get("User-Agent") or "unknown")[:255],
    }
