"""Delivery dispatcher — routes a code to the SMS or email service."""

from __future__ import annotations

import logging
from typing import Protocol

from clinic_otp.models.otp import Channel
from clinic_otp.otp.errors import DeliveryError
from clinic_otp.services.email_service import EmailService
from clinic_otp.services.sms_service import SmsService

logger = logging.getLogger(__name__)


class DeliveryDispatcher(Protocol):
    """Anything that can put a code in front of the user.

    Implementations raise ``DeliveryError`` when the code could not be sent.
    """

    async def deliver(
        self, target: str, channel: Channel, code: str, ttl_seconds: int
    ) -> None: ...


class ChannelDispatcher:
    """Sends phone targets over SMS and email targets over SMTP."""

    def __init__(
        self,
        sms_service: SmsService | None = None,
        email_service: EmailService | None = None,
    ) -> None:
        self._sms = sms_service or SmsService()
        self._email = email_service or EmailService()

    async def deliver(
        self, target: str, channel: Channel, code: str, ttl_seconds: int
    ) -> None:
        if channel is Channel.PHONE:
            await self._sms.send_otp(target, code, ttl_seconds)
        elif channel is Channel.EMAIL:
            await self._email.send_otp(target, code, ttl_seconds)
        else:
            raise DeliveryError(f"Unsupported delivery channel: {channel}")


class LoggingDispatcher:
    """Logs codes instead of sending them (local development and the simulator)."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Channel, str]] = []

    async def deliver(
        self, target: str, channel: Channel, code: str, ttl_seconds: int
    ) -> None:
        self.sent.append((target, channel, code))
        logger.info("📨 OTP for %s via %s: %s (valid %ss)", target, channel, code, ttl_seconds)
