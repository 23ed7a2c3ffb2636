"""Numeric OTP code generation."""

from __future__ import annotations

import random

CODE_LENGTH = 6
_LOWEST = 10 ** (CODE_LENGTH - 1)
_HIGHEST = 10**CODE_LENGTH - 1

_system_random = random.SystemRandom()


def generate_code(rng: random.Random | None = None) -> str:
    """Return a 6-digit code drawn uniformly from ``[100000, 999999]``."""
    source = rng or _system_random
    return str(source.randint(_LOWEST, _HIGHEST))
