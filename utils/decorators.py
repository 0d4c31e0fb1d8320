"""Principal-based access decorators for the JSON API."""
from functools import wraps

from flask import current_app, request
from flask_login import current_user

from extensions import db
from models import ADMIN_PRINCIPAL, USER_PRINCIPAL
from utils.audit import log_action
from utils.errors import AuthenticationError, AuthorizationError


def _require_principal(kind: str):
    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AuthenticationError("Not authenticated")
            if getattr(current_user, "principal_type", None) == kind:
                return view_func(*args, **kwargs)

            current_app.logger.warning(
                "Unauthorized principal access attempt",
                extra={"principal": current_user.get_id(), "required": kind, "endpoint": request.endpoint},
            )
            log_action("UNAUTHORIZED_ACCESS", current_user, context=request.path)
            db.session.commit()
            raise AuthorizationError()

        return wrapped

    return decorator


user_required = _require_principal(USER_PRINCIPAL)
admin_required = _require_principal(ADMIN_PRINCIPAL)


def any_principal_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            raise AuthenticationError("Not authenticated")
        return view_func(*args, **kwargs)

    return wrapped
