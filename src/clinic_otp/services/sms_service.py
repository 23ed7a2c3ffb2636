"""SMS service — delivers OTP codes through the Twilio Messages REST API."""

from __future__ import annotations

import logging

import httpx

from clinic_otp.config import settings
from clinic_otp.otp.errors import DeliveryError

logger = logging.getLogger(__name__)


class SmsService:
    """Async HTTP wrapper around Twilio's ``Messages.json`` endpoint."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self._auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self._from_number = from_number if from_number is not None else settings.twilio_phone_number
        self._base_url = (base_url or settings.twilio_api_base_url).rstrip("/")
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_number)

    async def send_otp(self, to_phone: str, code: str, ttl_seconds: int) -> None:
        """Send *code* to *to_phone* (canonical ``+<digits>`` form).

        Raises ``DeliveryError`` if Twilio is unconfigured, unreachable or
        rejects the message.
        """
        if not self.is_configured:
            if settings.debug:
                logger.warning("Twilio not configured — OTP for %s logged only: %s", to_phone, code)
                return
            raise DeliveryError("SMS provider is not configured")

        url = f"{self._base_url}/Accounts/{self._account_sid}/Messages.json"
        payload = {
            "To": to_phone,
            "From": self._from_number,
            "Body": _build_body(code, ttl_seconds),
        }
        logger.info("Sending OTP SMS to %s", to_phone)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    url, data=payload, auth=(self._account_sid, self._auth_token)
                )
        except httpx.HTTPError as exc:
            logger.exception("Twilio request error for %s: %s", to_phone, exc)
            raise DeliveryError("Failed to reach SMS provider") from exc

        if resp.is_success:
            logger.info("OTP SMS accepted for %s (sid=%s)", to_phone, resp.json().get("sid"))
            return
        logger.error("Twilio API error for %s: %s %s", to_phone, resp.status_code, resp.text)
        raise DeliveryError("Failed to send OTP SMS")


def _build_body(code: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        f"Your {settings.app_name} verification code is {code}."
        f" It expires in {minutes} minute(s)."
    )
