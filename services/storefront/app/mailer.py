"""
Storefront Service — メール送信

注文確認メールの生成と SMTP 送信。
送信はリトライしない。失敗時は NotificationSendFailed を送出し、
再送はキューの再配信に任せる。
"""

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr

from . import config
from .errors import NotificationSendFailed
from .events import OrderConfirmationMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedEmail:
    to: str
    subject: str
    text: str
    html: str


def render_confirmation(message: OrderConfirmationMessage) -> RenderedEmail:
    """注文確認メールの本文を組み立てる。"""
    lines = [
        f"Hi {message.username},",
        "",
        "Your order has been confirmed!",
        "",
        f"Order Number: {message.order_number}",
        f"Product: {message.product_name}",
        f"Total Amount: ${message.total_amount}",
        "Payment Method: Cash on Delivery",
        "",
        "Thank you for your order!",
    ]
    body_html = (
        "<h2>Order Confirmation</h2>"
        f"<p>Hi {html.escape(message.username)},</p>"
        "<p>Your order has been confirmed!</p>"
        f"<p><strong>Order Number:</strong> {html.escape(message.order_number)}</p>"
        f"<p><strong>Product:</strong> {html.escape(message.product_name)}</p>"
        f"<p><strong>Total Amount:</strong> ${message.total_amount}</p>"
        "<p><strong>Payment Method:</strong> Cash on Delivery</p>"
        "<p>Thank you for your order!</p>"
    )
    return RenderedEmail(
        to=message.email,
        subject=f"Order Confirmation - {message.order_number}",
        text="\n".join(lines),
        html=body_html,
    )


class SmtpSender:
    """smtplib をスレッドで実行する非同期ラッパー"""

    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int | None = config.SMTP_PORT,
        username: str = config.SMTP_USERNAME,
        password: str = config.SMTP_PASSWORD,
        from_email: str = config.SMTP_FROM_EMAIL,
        from_name: str = config.SMTP_FROM_NAME,
        use_tls: bool = config.SMTP_USE_TLS,
        use_ssl: bool = config.SMTP_USE_SSL,
        timeout: float = config.SMTP_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port or (465 if use_ssl else 587)
        self.username = username
        self.password = password
        self.from_address = formataddr((from_name, from_email or username))
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.timeout = timeout

    async def send(self, email: RenderedEmail) -> None:
        if not self.host:
            raise NotificationSendFailed("SMTP_HOST is not configured")

        message = EmailMessage()
        message["Subject"] = email.subject
        message["From"] = self.from_address
        message["To"] = email.to
        message.set_content(email.text)
        message.add_alternative(email.html, subtype="html")

        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationSendFailed(f"SMTP send to {email.to} failed: {e}") from e
        logger.info("Confirmation email sent to %s", email.to)

    def _send_sync(self, message: EmailMessage) -> None:
        if self.use_ssl:
            smtp = smtplib.SMTP_SSL(host=self.host, port=self.port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(host=self.host, port=self.port, timeout=self.timeout)
        try:
            if self.use_tls and not self.use_ssl:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
        finally:
            try:
                smtp.quit()
            except (smtplib.SMTPException, OSError):
                smtp.close()
