from unittest.mock import MagicMock, patch

import pytest

from conftest import fetch_csrf

MESSAGE = {
    "firstName": "Alice",
    "lastName": "Doe",
    "email": "Alice@Refunds.io",
    "subject": "Where is my refund?",
    "message": "Claim #12 has been In Review for a month & counting.",
}


def test_contact_message_is_accepted(client):
    token = fetch_csrf(client)
    response = client.post("/api/contact", json=MESSAGE, headers={"X-CSRF-Token": token})
    assert response.status_code == 200
    assert response.get_json() == {"success": True, "message": "Message sent successfully!"}


def test_contact_requires_csrf_token(client):
    assert client.post("/api/contact", json=MESSAGE).status_code == 403


@pytest.mark.parametrize("field", ["firstName", "lastName", "email", "subject", "message"])
def test_contact_requires_every_field(client, field):
    token = fetch_csrf(client)
    payload = dict(MESSAGE, **{field: "   "})
    response = client.post("/api/contact", json=payload, headers={"X-CSRF-Token": token})
    assert response.status_code == 400
    assert response.get_json() == {"success": False, "message": "All fields are required."}


def test_contact_rejects_malformed_email(client):
    token = fetch_csrf(client)
    response = client.post("/api/contact", json=dict(MESSAGE, email="not-an-address"), headers={"X-CSRF-Token": token})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Please enter a valid email address."


def test_contact_is_relayed_to_the_support_inbox(app, client):
    app.config.update(
        MAIL_SERVER="smtp.refunds.io",
        MAIL_DEFAULT_SENDER="claims@refunds.io",
        CONTACT_INBOX="support@refunds.io",
    )
    smtp = MagicMock()
    token = fetch_csrf(client)
    with patch("utils.email_service.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = smtp
        response = client.post("/api/contact", json=MESSAGE, headers={"X-CSRF-Token": token})
    assert response.status_code == 200

    sent = smtp.send_message.call_args[0][0]
    assert sent["To"] == "support@refunds.io"
    assert sent["Subject"] == "[Contact] Where is my refund?"
    body = sent.get_content()
    assert "Alice Doe <alice@refunds.io>" in body
    assert "a month & counting." in body
