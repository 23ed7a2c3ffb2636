"""Target normalizer — canonical storage keys for phone numbers and emails."""

from __future__ import annotations

import re
import unicodedata

from clinic_otp.config import settings
from clinic_otp.models.otp import Channel
from clinic_otp.otp.errors import InvalidTargetError

_PHONE_PATTERN = re.compile(r"^\+?[0-9]+$")
_CANONICAL_PHONE = re.compile(r"^\+[0-9]{8,15}$")
_PHONE_PUNCTUATION = re.compile(r"[\s\-().]")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# E.164 allows at most 15 digits after the "+"
MIN_PHONE_DIGITS = 8
MAX_PHONE_DIGITS = 15


def is_phone(target: str) -> bool:
    return bool(_PHONE_PATTERN.match(target))


def is_email(target: str) -> bool:
    return bool(_EMAIL_PATTERN.match(target))


def _ascii_digits(value: str) -> str:
    """Fold full-width, Arabic-Indic and other decimal digits to ``0-9``."""
    folded = unicodedata.normalize("NFKC", value)
    return "".join(
        str(unicodedata.decimal(ch)) if ch.isdecimal() else ch for ch in folded
    )


class TargetNormalizer:
    """Canonicalizes raw user input so issuance and verification share a key.

    Phone numbers collapse to ``+<country><subscriber>`` regardless of
    whether the user typed the local trunk prefix (``0917...``), the bare
    country code (``63917...``) or the international form (``+63917...``),
    and in whatever script the digits were typed.  Emails are trimmed and
    lowercased.  Anything else is kept as an opaque, trimmed string.
    """

    def __init__(self, country_code: str, trunk_prefix: str = "0") -> None:
        self._country_code = country_code.lstrip("+")
        self._trunk_prefix = trunk_prefix

    def normalize(self, raw: str | None) -> str:
        """Return the canonical form of *raw*.

        Raises ``InvalidTargetError`` for empty input or for a phone number
        whose canonical form is not a plausible E.164 length.
        """
        if raw is None or not raw.strip():
            raise InvalidTargetError()

        compact = _ascii_digits(_PHONE_PUNCTUATION.sub("", raw))
        if is_phone(compact):
            return self._normalize_phone(compact)

        cleaned = raw.strip()
        if "@" in cleaned:
            return cleaned.lower()
        return cleaned

    def normalize_for_channel(self, raw: str | None, channel: Channel) -> str:
        """Normalize *raw* and check it can be delivered over *channel*."""
        target = self.normalize(raw)
        if channel is Channel.PHONE and not _CANONICAL_PHONE.match(target):
            raise InvalidTargetError("Invalid phone number format")
        if channel is Channel.EMAIL and not is_email(target):
            raise InvalidTargetError("Invalid email format")
        return target

    def _normalize_phone(self, compact: str) -> str:
        digits = compact.lstrip("+")
        if not compact.startswith("+"):
            if self._trunk_prefix and digits.startswith(self._trunk_prefix):
                digits = self._country_code + digits[len(self._trunk_prefix):]
            elif not digits.startswith(self._country_code):
                # Bare subscriber number
                digits = self._country_code + digits

        if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            raise InvalidTargetError("Invalid phone number format")
        return f"+{digits}"


default_normalizer = TargetNormalizer(settings.default_country_code, settings.trunk_prefix)


def normalize_target(raw: str | None) -> str:
    """Normalize *raw* using the configured country code and trunk prefix."""
    return default_normalizer.normalize(raw)
