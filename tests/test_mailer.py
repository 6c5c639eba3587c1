import smtplib
from decimal import Decimal

import pytest

from app import mailer
from app.errors import NotificationSendFailed
from app.events import OrderConfirmationMessage
from app.mailer import SmtpSender, render_confirmation


def message(username="alice"):
    return OrderConfirmationMessage(
        order_number="ORD-1",
        email="alice@example.com",
        username=username,
        product_name="Widget",
        total_amount=Decimal("30.00"),
    )


def test_render_confirmation():
    email = render_confirmation(message())

    assert email.to == "alice@example.com"
    assert email.subject == "Order Confirmation - ORD-1"
    assert "Total Amount: $30.00" in email.text
    assert "Cash on Delivery" in email.html


def test_render_escapes_html():
    email = render_confirmation(message(username="<b>eve</b>"))

    assert "<b>eve</b>" not in email.html
    assert "&lt;b&gt;eve&lt;/b&gt;" in email.html


async def test_missing_smtp_host_fails():
    sender = SmtpSender(host="")

    with pytest.raises(NotificationSendFailed):
        await sender.send(render_confirmation(message()))


class FakeSMTP:
    instances = []
    fail_next = False

    def __init__(self, host, port, timeout):
        self.host, self.port = host, port
        self.sent = []
        FakeSMTP.instances.append(self)

    def starttls(self):
        pass

    def login(self, username, password):
        pass

    def send_message(self, msg):
        if FakeSMTP.fail_next:
            raise smtplib.SMTPServerDisconnected("Connection unexpectedly closed")
        self.sent.append(msg)

    def quit(self):
        pass

    def close(self):
        pass


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_next = False
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


async def test_send_delivers_message(fake_smtp):
    sender = SmtpSender(host="smtp.example.com", username="shop", password="secret", from_email="shop@example.com")

    await sender.send(render_confirmation(message()))

    (smtp,) = fake_smtp.instances
    assert smtp.port == 587
    (sent,) = smtp.sent
    assert sent["To"] == "alice@example.com"
    assert sent["Subject"] == "Order Confirmation - ORD-1"


async def test_smtp_error_becomes_send_failed(fake_smtp):
    fake_smtp.fail_next = True
    sender = SmtpSender(host="smtp.example.com")

    with pytest.raises(NotificationSendFailed):
        await sender.send(render_confirmation(message()))
