"""Base form for JSON and multipart API bodies."""
from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict

from utils.errors import ValidationError


class ApiForm(FlaskForm):
    """FlaskForm fed from a JSON object when the request carries one.

    The per-form CSRF field is off: the app-wide CSRFProtect already checked the
    ``X-CSRF-Token`` header before the view runs.
    """

    class Meta:
        csrf = False

    def __init__(self, *args, **kwargs):
        if "formdata" not in kwargs and request.is_json:
            payload = request.get_json(silent=True)
            if not isinstance(payload, dict):
                payload = {}
            kwargs["formdata"] = MultiDict(
                {
                    key: "" if value is None else str(value)
                    for key, value in payload.items()
                    if not isinstance(value, (dict, list))
                }
            )
        super().__init__(*args, **kwargs)

    def first_error(self) -> str:
        for field_name, messages in self.errors.items():
            if messages:
                label = getattr(self, field_name).label.text if hasattr(self, field_name) else field_name
                return f"{label}: {messages[0]}"
        return "Invalid request."

    def validate_or_raise(self, message: str | None = None) -> "ApiForm":
        if not self.validate_on_submit():
            raise ValidationError(message or self.first_error())
        return self
