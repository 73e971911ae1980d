"""
Outbound message delivery.

Email goes through SMTP, SMS through the HTTP gateway configured with
SMS_PROVIDER_HOST. Both channels only report success or failure; callers
decide what a failure means for their flow.
"""
import html
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Any, Optional

import httpx
from loguru import logger
from starlette.concurrency import run_in_threadpool

from telecare.core.config import Settings


EMAIL_TEMPLATES: Dict[str, str] = {
    "passwordReset": """
    <h2>Password Reset Request</h2>
    <p>Dear {username},</p>
    <p>Your password reset code is <strong>{verificationCode}</strong>.</p>
    <p>If you didn't request this, please ignore this email.</p>
    """,
    "accountVerification": """
    <h2>Verify Your Account</h2>
    <p>Dear {username},</p>
    <p>Your account verification code is <strong>{verificationCode}</strong>.</p>
    """,
}


def render_template(template: str, data: Dict[str, Any]) -> str:
    """Render one of the EMAIL_TEMPLATES with HTML-escaped values"""
    body = EMAIL_TEMPLATES[template]
    return body.format(**{key: html.escape(str(value)) for key, value in data.items()})


def format_phone_number(phone_number: str) -> str:
    """Normalize a contact number to the local format expected by the SMS gateway"""
    if phone_number.startswith("+880"):
        phone_number = phone_number[4:]

    if not phone_number.startswith("0"):
        phone_number = "0" + phone_number

    return phone_number


class NotificationService:
    """Email and SMS delivery used by the authentication flows"""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    async def send_email(self, to: str, subject: str, template: str, data: Dict[str, Any]) -> bool:
        if not self.settings.SMTP_HOST:
            logger.error("Error sending email: SMTP_HOST is not configured")
            return False

        try:
            body = render_template(template, data)
        except KeyError as e:
            logger.error(f"Error sending email: unknown template or field {e}")
            return False

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self.settings.SMTP_FROM} <{self.settings.SMTP_USER or ''}>"
        message["To"] = to
        message.attach(MIMEText(body, "html"))

        try:
            await run_in_threadpool(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending email: {e}")
            return False

        logger.info(f"Email sent: {subject}")
        return True

    def _deliver(self, message: MIMEMultipart) -> None:
        host, port = self.settings.SMTP_HOST, self.settings.SMTP_PORT
        smtp_class = smtplib.SMTP_SSL if port == 465 else smtplib.SMTP

        with smtp_class(host, port, timeout=30) as server:
            if port != 465 and self.settings.SMTP_USER:
                server.starttls()
            if self.settings.SMTP_USER and self.settings.SMTP_PASS:
                server.login(self.settings.SMTP_USER, self.settings.SMTP_PASS)
            server.send_message(message)

    async def send_sms(self, number: str, message: str) -> bool:
        if not self.settings.SMS_PROVIDER_HOST:
            logger.error("Error sending SMS: SMS_PROVIDER_HOST is not configured")
            return False

        body = {
            "api_key": self.settings.SMS_API_KEY,
            "senderid": self.settings.SMS_SENDER_ID,
            "number": format_phone_number(number),
            "message": message,
        }

        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=self.settings.SMS_TIMEOUT,
            ) as client:
                response = await client.post(self.settings.SMS_PROVIDER_HOST, json=body)
        except httpx.HTTPError as e:
            logger.error(f"Error sending SMS: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Error sending SMS: {response.status_code} {response.reason_phrase}")
            return False

        logger.info("SMS sent")
        return True
