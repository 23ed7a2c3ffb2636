"""OTP stores — keyed, time-bounded records with single-use consumption.

Two implementations share the ``OTPStore`` interface:

* ``InMemoryOTPStore`` keeps records in a dict for single-process
  deployments.
* ``DatabaseOTPStore`` keeps them in the ``otp_codes`` table so several
  processes can share one set of pending codes.

Both treat expiry as authoritative on every read, whether or not the
periodic sweep has run.
"""

from __future__ import annotations

import hmac
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_otp.models.otp import Channel, OtpEntry, OtpRecord
from clinic_otp.otp.errors import (
    AlreadyPendingError,
    ExpiredError,
    MismatchError,
    NotFoundError,
)
from clinic_otp.otp.generator import generate_code

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def _check_code(record: OtpRecord, supplied_code: str, now: datetime) -> OtpRecord:
    """Apply the expiry and match rules to a record already removed from the store."""
    if record.is_expired(now):
        logger.info("OTP expired for %s", record.target)
        raise ExpiredError()
    supplied = (supplied_code or "").strip().encode("utf-8")
    if not hmac.compare_digest(record.code.encode("utf-8"), supplied):
        logger.info("OTP mismatch for %s", record.target)
        raise MismatchError()
    logger.info("OTP verified for %s", record.target)
    return record


class OTPStore(ABC):
    """Abstract store owning every issued ``OtpRecord``."""

    def __init__(
        self,
        clock: Clock = utc_now,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self._clock = clock
        self._code_factory = code_factory

    def _new_record(self, target: str, channel: Channel, ttl_seconds: int) -> OtpRecord:
        now = self._clock()
        return OtpRecord(
            target=target,
            code=self._code_factory(),
            channel=Channel(channel),
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    @abstractmethod
    async def issue(self, target: str, channel: Channel, ttl_seconds: int) -> OtpRecord:
        """Create a fresh code for *target*.

        Raises ``AlreadyPendingError`` while a live code exists.
        """

    @abstractmethod
    async def peek(self, target: str) -> OtpRecord | None:
        """Return the live record for *target* without consuming it."""

    @abstractmethod
    async def consume(self, target: str, supplied_code: str) -> OtpRecord:
        """Atomically remove the record for *target* and check *supplied_code*.

        The record is gone afterwards whatever the outcome.  Raises
        ``NotFoundError``, ``ExpiredError`` or ``MismatchError``.
        """

    @abstractmethod
    async def discard(self, target: str, code: str) -> bool:
        """Remove the record for *target* only if it still holds *code*."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete every expired record and return how many were removed."""


class InMemoryOTPStore(OTPStore):
    """Dict-backed store for a single process.

    Each entry maps ``target → OtpRecord``.  All check-then-act sequences
    run under one lock and contain no ``await``, so they are serialized
    both on an event loop and across worker threads.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        super().__init__(clock, code_factory)
        self._store: dict[str, OtpRecord] = {}
        self._lock = threading.Lock()

    async def issue(self, target: str, channel: Channel, ttl_seconds: int) -> OtpRecord:
        with self._lock:
            existing = self._store.get(target)
            if existing is not None and not existing.is_expired(self._clock()):
                raise AlreadyPendingError()
            record = self._new_record(target, channel, ttl_seconds)
            self._store[target] = record
        logger.info("OTP issued for %s via %s", target, record.channel)
        logger.debug("OTP for %s: %s", target, record.code)
        return record

    async def peek(self, target: str) -> OtpRecord | None:
        with self._lock:
            record = self._store.get(target)
            if record is None:
                return None
            if record.is_expired(self._clock()):
                del self._store[target]
                return None
            return record

    async def consume(self, target: str, supplied_code: str) -> OtpRecord:
        with self._lock:
            record = self._store.pop(target, None)
            now = self._clock()
        if not isinstance(record, OtpRecord) or not record.code:
            raise NotFoundError()
        return _check_code(record, supplied_code, now)

    async def discard(self, target: str, code: str) -> bool:
        with self._lock:
            record = self._store.get(target)
            if record is None or record.code != code:
                return False
            del self._store[target]
            return True

    async def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [t for t, r in self._store.items() if r.is_expired(now)]
            for target in expired:
                del self._store[target]
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)


# ── Database-backed store ────────────────────────────────


def _to_db(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_db(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC)


class DatabaseOTPStore(OTPStore):
    """Store backed by the ``otp_codes`` table.

    Uniqueness comes from the primary key on ``target``.  Consumption is a
    compare-and-delete: the row is read, then deleted with a ``WHERE`` on
    every field that was read, and only the caller whose delete removed the
    row gets to check the code.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        super().__init__(clock, code_factory)
        self._session_factory = session_factory

    async def issue(self, target: str, channel: Channel, ttl_seconds: int) -> OtpRecord:
        record = self._new_record(target, channel, ttl_seconds)
        try:
            async with self._session_factory() as session, session.begin():
                # Expired or corrupt rows must not block a new code
                await session.execute(
                    delete(OtpEntry).where(
                        OtpEntry.target == target,
                        or_(
                            OtpEntry.expires_at < _to_db(record.issued_at),
                            OtpEntry.expires_at.is_(None),
                            OtpEntry.code.is_(None),
                        ),
                    )
                )
                session.add(
                    OtpEntry(
                        target=record.target,
                        code=record.code,
                        channel=record.channel.value,
                        issued_at=_to_db(record.issued_at),
                        expires_at=_to_db(record.expires_at),
                    )
                )
        except IntegrityError as exc:
            raise AlreadyPendingError() from exc
        logger.info("OTP issued for %s via %s", target, record.channel)
        logger.debug("OTP for %s: %s", target, record.code)
        return record

    async def peek(self, target: str) -> OtpRecord | None:
        async with self._session_factory() as session, session.begin():
            entry = await self._load(session, target)
            if entry is None:
                return None
            record = self._to_record(entry)
            if record is None or record.is_expired(self._clock()):
                await self._delete_exact(session, entry)
                return None
            return record

    async def consume(self, target: str, supplied_code: str) -> OtpRecord:
        async with self._session_factory() as session, session.begin():
            entry = await self._load(session, target)
            claimed = entry is not None and await self._delete_exact(session, entry)
        now = self._clock()

        if not claimed:
            raise NotFoundError()
        record = self._to_record(entry)
        if record is None:
            logger.warning("Discarded malformed OTP row for %s", target)
            raise NotFoundError()
        return _check_code(record, supplied_code, now)

    async def discard(self, target: str, code: str) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(OtpEntry).where(OtpEntry.target == target, OtpEntry.code == code)
            )
            return result.rowcount == 1

    async def purge_expired(self) -> int:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(OtpEntry).where(OtpEntry.expires_at < _to_db(self._clock()))
            )
            return result.rowcount

    # ── Private helpers ──────────────────────────────────

    @staticmethod
    async def _load(session: AsyncSession, target: str) -> OtpEntry | None:
        result = await session.execute(select(OtpEntry).where(OtpEntry.target == target))
        return result.scalar_one_or_none()

    @staticmethod
    async def _delete_exact(session: AsyncSession, entry: OtpEntry) -> bool:
        """Delete *entry* only if the row still holds the values that were read."""
        result = await session.execute(
            delete(OtpEntry).where(
                OtpEntry.target == entry.target,
                OtpEntry.code == entry.code,
                OtpEntry.expires_at == entry.expires_at,
            )
        )
        return result.rowcount == 1

    @staticmethod
    def _to_record(entry: OtpEntry) -> OtpRecord | None:
        if not entry.code or entry.expires_at is None or entry.issued_at is None:
            return None
        try:
            channel = Channel(entry.channel)
        except ValueError:
            return None
        return OtpRecord(
            target=entry.target,
            code=entry.code,
            channel=channel,
            issued_at=_from_db(entry.issued_at),
            expires_at=_from_db(entry.expires_at),
        )
