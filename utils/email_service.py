"""SMTP dispatch for claim status notifications and contact messages."""
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

from flask import current_app

from models import Claim


class EmailDeliveryError(Exception):
    """Raised when email dispatch fails."""


def mail_configured() -> bool:
    return bool(current_app.config.get("MAIL_SERVER") and current_app.config.get("MAIL_DEFAULT_SENDER"))


def _status_body(claim: Claim) -> str:
    lines = [
        f"Hello {claim.user.name}," if claim.user and claim.user.name else "Hello,",
        "",
        f"The status of your {claim.claim_type} claim #{claim.id} is now: {claim.status}.",
    ]
    if claim.admin_notes:
        lines.extend(["", "Notes from our team:", claim.admin_notes])
    lines.extend(["", "You can follow every claim from your dashboard."])
    return "\n".join(lines)


def _dispatch_email(subject: str, text_body: str, sender: str, recipients: list[str]) -> None:
    if not recipients:
        raise EmailDeliveryError("No recipients resolved for email dispatch")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(text_body)

    host = current_app.config.get("MAIL_SERVER")
    port = int(current_app.config.get("MAIL_PORT", 25))
    username = current_app.config.get("MAIL_USERNAME")
    password = current_app.config.get("MAIL_PASSWORD")
    use_tls = bool(current_app.config.get("MAIL_USE_TLS"))
    use_ssl = bool(current_app.config.get("MAIL_USE_SSL"))
    timeout = float(current_app.config.get("MAIL_TIMEOUT", 10))

    if not host:
        raise EmailDeliveryError("MAIL_SERVER is not configured")

    try:
        if use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context, timeout=timeout) as server:
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(host, port, timeout=timeout) as server:
                server.ehlo()
                if use_tls:
                    server.starttls(context=ssl.create_default_context())
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(str(exc)) from exc


def notify_claim_status(claim: Claim) -> bool:
    """Best-effort notice to the claim owner; never raises."""
    if not mail_configured() or not claim.user or not claim.user.email:
        return False
    try:
        _dispatch_email(
            f"Update on your claim #{claim.id}",
            _status_body(claim),
            current_app.config["MAIL_DEFAULT_SENDER"],
            [claim.user.email],
        )
    except EmailDeliveryError:
        current_app.logger.warning("Claim status email failed", extra={"claim_id": claim.id}, exc_info=True)
        return False
    current_app.logger.info("Claim status email sent", extra={"claim_id": claim.id})
    return True


def relay_contact_message(first_name: str, last_name: str, email: str, subject: str, message: str) -> bool:
    """Forward a contact form message to the support inbox, if one is configured."""
    inbox = current_app.config.get("CONTACT_INBOX")
    if not mail_configured() or not inbox:
        return False
    body = "\n".join([f"From: {first_name} {last_name} <{email}>", "", message])
    try:
        _dispatch_email(f"[Contact] {subject}", body, current_app.config["MAIL_DEFAULT_SENDER"], [inbox])
    except EmailDeliveryError:
        current_app.logger.warning("Contact relay failed", extra={"reply_to": email}, exc_info=True)
        return False
    return True
