"""OTP record value object and its SQLAlchemy table."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Channel(StrEnum):
    """Delivery medium for a code."""

    PHONE = "phone"
    EMAIL = "email"


@dataclass(frozen=True)
class OtpRecord:
    """An issued code for one canonical target."""

    target: str
    code: str
    channel: Channel
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


class OtpEntry(Base):
    """Persisted form of an ``OtpRecord``.

    The canonical target is the primary key, so the database itself
    refuses a second live row for the same phone number or email.
    Timestamps are stored as naive UTC.
    """

    __tablename__ = "otp_codes"

    target: Mapped[str] = mapped_column(String(320), primary_key=True)
    code: Mapped[str | None] = mapped_column(String(16))
    channel: Mapped[str | None] = mapped_column(String(16))
    issued_at: Mapped[datetime | None] = mapped_column(DateTime())
    expires_at: Mapped[datetime | None] = mapped_column(DateTime())

    __table_args__ = (Index("ix_otp_codes_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<OtpEntry target={self.target!r} expires_at={self.expires_at!r}>"
