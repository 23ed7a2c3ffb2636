"""Verification gate — the two operations callers use: request and verify.

Per target, a code moves through::

    NoPendingCode ──issue──▶ CodeIssued ──consume──▶ Verified | Expired | Rejected
          ▲                                                    │
          └──────────────────── record deleted ────────────────┘

A wrong guess consumes the code just like a correct one, so the user
has to request a new code after any failed attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from clinic_otp.config import settings
from clinic_otp.database.engine import async_session_factory
from clinic_otp.models.otp import Channel, OtpRecord
from clinic_otp.otp.errors import DeliveryError, InvalidTargetError, OtpError
from clinic_otp.otp.normalizer import TargetNormalizer, default_normalizer
from clinic_otp.otp.store import DatabaseOTPStore, InMemoryOTPStore, OTPStore
from clinic_otp.services.dispatcher import ChannelDispatcher, DeliveryDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpOutcome:
    """Caller-facing result of ``request_code`` / ``verify_code``."""

    success: bool
    message: str
    error: OtpError | None = None
    record: OtpRecord | None = None

    @property
    def status_code(self) -> int:
        return 200 if self.error is None else self.error.status_code

    @classmethod
    def failed(cls, error: OtpError) -> OtpOutcome:
        return cls(success=False, message=error.message, error=error)


def _parse_channel(method: str | Channel) -> Channel:
    try:
        return Channel(method)
    except ValueError as exc:
        raise InvalidTargetError("Invalid verification method") from exc


class VerificationGate:
    """Issues codes with delivery as one unit, and verifies them exactly once."""

    def __init__(
        self,
        store: OTPStore,
        dispatcher: DeliveryDispatcher,
        ttl_seconds: int = 300,
        email_ttl_seconds: int | None = None,
        delivery_timeout: float = 10.0,
        normalizer: TargetNormalizer = default_normalizer,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._ttl_seconds = ttl_seconds
        self._email_ttl_seconds = email_ttl_seconds
        self._delivery_timeout = delivery_timeout
        self._normalizer = normalizer

    @property
    def store(self) -> OTPStore:
        return self._store

    def ttl_for(self, channel: Channel) -> int:
        if channel is Channel.EMAIL and self._email_ttl_seconds:
            return self._email_ttl_seconds
        return self._ttl_seconds

    async def request_code(self, target: str | None, method: str | Channel) -> OtpOutcome:
        """Issue a code for *target* and deliver it over *method*.

        If delivery fails or times out, the new code is withdrawn so the
        user can ask again straight away.
        """
        try:
            channel = _parse_channel(method)
            canonical = self._normalizer.normalize_for_channel(target, channel)
            ttl = self.ttl_for(channel)
            record = await self._store.issue(canonical, channel, ttl)
        except OtpError as exc:
            logger.info("OTP request rejected for %r: %s", target, exc.message)
            return OtpOutcome.failed(exc)

        try:
            await asyncio.wait_for(
                self._dispatcher.deliver(canonical, channel, record.code, ttl),
                timeout=self._delivery_timeout,
            )
        except (DeliveryError, TimeoutError) as exc:
            await self._store.discard(canonical, record.code)
            if isinstance(exc, DeliveryError):
                error = exc
            else:
                logger.error("OTP delivery to %s timed out after %ss", canonical, self._delivery_timeout)
                error = DeliveryError("Timed out sending OTP")
            logger.warning("OTP for %s rolled back: %s", canonical, error.message)
            return OtpOutcome.failed(error)
        except BaseException:
            # Includes cancellation of the request mid-delivery
            await self._store.discard(canonical, record.code)
            raise

        logger.info("OTP sent to %s via %s", canonical, channel)
        return OtpOutcome(success=True, message=f"OTP sent successfully via {channel}", record=record)

    async def verify_code(
        self, target: str | None, code: str | None, method: str | Channel
    ) -> OtpOutcome:
        """Check *code* against the pending code for *target*.

        Always returns an outcome; stale or malformed input becomes a
        typed failure rather than an exception.
        """
        try:
            channel = _parse_channel(method)
            canonical = self._normalizer.normalize_for_channel(target, channel)
            record = await self._store.consume(canonical, code or "")
        except OtpError as exc:
            return OtpOutcome.failed(exc)
        return OtpOutcome(success=True, message="OTP verified successfully", record=record)


def build_gate(dispatcher: DeliveryDispatcher | None = None) -> VerificationGate:
    """Wire a gate from settings: store backend, TTLs and provider services."""
    if settings.otp_store_backend == "database":
        store: OTPStore = DatabaseOTPStore(async_session_factory)
    else:
        store = InMemoryOTPStore()

    return VerificationGate(
        store=store,
        dispatcher=dispatcher or ChannelDispatcher(),
        ttl_seconds=settings.otp_ttl_seconds,
        email_ttl_seconds=settings.otp_email_ttl_seconds,
        delivery_timeout=settings.otp_delivery_timeout_seconds,
    )
