"""Single-use backup codes issued alongside a TOTP secret."""

from __future__ import annotations

import re
import secrets
import string

RECOVERY_CODE_COUNT = 8
SEGMENT_LENGTH = 10
SEPARATOR = "-"
RECOVERY_CODE_PATTERN = re.compile(
    rf"^[A-Za-z0-9]{{{SEGMENT_LENGTH}}}{re.escape(SEPARATOR)}[A-Za-z0-9]{{{SEGMENT_LENGTH}}}$"
)

_ALPHABET = string.ascii_letters + string.digits


def _segment(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_recovery_code(segment_length: int = SEGMENT_LENGTH, separator: str = SEPARATOR) -> str:
    """Return one code made of two independent random segments."""
    return f"{_segment(segment_length)}{separator}{_segment(segment_length)}"


def generate_recovery_codes(
    count: int = RECOVERY_CODE_COUNT,
    segment_length: int = SEGMENT_LENGTH,
    separator: str = SEPARATOR,
) -> list[str]:
    """Generate ``count`` pairwise-distinct recovery codes.

    A code that collides with one already in the set is drawn again, so the
    result always has exactly ``count`` members in generation order.
    """
    codes: list[str] = []
    seen: set[str] = set()
    while len(codes) < count:
        code = generate_recovery_code(segment_length, separator)
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes
