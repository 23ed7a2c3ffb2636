"""Email service — sends OTP codes via async SMTP."""

from __future__ import annotations

import logging
from email.message import EmailMessage

import aiosmtplib

from clinic_otp.config import settings
from clinic_otp.otp.errors import DeliveryError

logger = logging.getLogger(__name__)


class EmailService:
    """Sends transactional emails using the configured SMTP server."""

    @property
    def is_configured(self) -> bool:
        return bool(settings.smtp_host and settings.email_from)

    async def send_otp(self, to_email: str, code: str, ttl_seconds: int) -> None:
        """Send a verification-code email.

        Parameters
        ----------
        to_email:
            Recipient email address (already normalized).
        code:
            The 6-digit code.
        ttl_seconds:
            Code lifetime, stated in the email in minutes.
        """
        if not self.is_configured:
            if settings.debug:
                logger.warning("SMTP not configured — OTP for %s logged only: %s", to_email, code)
                return
            raise DeliveryError("Email provider is not configured")

        msg = build_otp_message(to_email, code, ttl_seconds)
        logger.info("Sending OTP email to %s", to_email)

        try:
            await aiosmtplib.send(
                msg,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                start_tls=True,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.error("SMTP error sending OTP to %s: %s", to_email, exc)
            raise DeliveryError("Failed to send OTP email") from exc

        logger.info("OTP email sent to %s", to_email)


def build_otp_message(to_email: str, code: str, ttl_seconds: int) -> EmailMessage:
    """Plain-text email with an HTML alternative."""
    minutes = max(1, ttl_seconds // 60)
    msg = EmailMessage()
    msg["Subject"] = "Your Verification Code"
    msg["From"] = settings.email_from
    msg["To"] = to_email
    msg.set_content(
        f"Your verification code is: {code}\n\n"
        f"This code will expire in {minutes} minutes.\n\n"
        "If you did not request this code, you can ignore this email.\n\n"
        f"The {settings.app_name} Team"
    )
    msg.add_alternative(
        f"""\
<div style="font-family: Arial, sans-serif; padding: 20px;">
    <h2>Verification Code</h2>
    <p>Your verification code is:</p>
    <h1 style="color: #4CAF50; font-size: 32px;">{code}</h1>
    <p>This code will expire in {minutes} minutes.</p>
</div>
""",
        subtype="html",
    )
    return msg
