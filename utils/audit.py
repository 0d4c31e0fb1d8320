"""Authentication audit trail (who signed in, failed, or was turned away)."""
from flask import current_app, has_request_context

from extensions import db
from models import AuditLog
from utils.security import client_fingerprint


def log_action(action: str, principal=None, context: str | None = None) -> None:
    """Stage an audit row on the current session; the caller's commit persists it."""
    principal_id = principal.get_id() if principal is not None else None
    fingerprint = client_fingerprint() if has_request_context() else {"ip_address": None, "user_agent": "system"}
    entry = AuditLog(
        principal=principal_id,
        action_type=action,
        ip_address=fingerprint["ip_address"],
        user_agent=fingerprint["user_agent"],
        context=(context or "")[:255] or None,
    )
    db.session.add(entry)
    current_app.logger.info("audit_%s", action.lower(), extra={"principal": principal_id, "context": context})
