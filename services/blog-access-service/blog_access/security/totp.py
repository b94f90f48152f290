"""RFC 6238 time-based one-time codes backed by ``pyotp``."""

from __future__ import annotations

from datetime import datetime, timezone

import pyotp


class TotpEngine:
    """Generate secrets, compute and verify codes, and build provisioning URIs.

    Parameters
    ----------
    digits:
        Length of each code.
    interval:
        Time step in seconds.
    valid_window:
        Number of steps accepted on either side of the current one to absorb
        clock drift.
    """

    # 32 base32 characters encode a 160-bit key
    SECRET_LENGTH = 32

    def __init__(self, digits: int = 6, interval: int = 30, valid_window: int = 1) -> None:
        self._digits = digits
        self._interval = interval
        self._valid_window = valid_window

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self._digits, interval=self._interval)

    def generate_secret(self) -> str:
        return pyotp.random_base32(length=self.SECRET_LENGTH)

    def code_at(self, secret: str, now: datetime | None = None) -> str:
        """Return the code valid for the window containing ``now``."""
        return self._totp(secret).at(now or datetime.now(timezone.utc))

    def verify(self, secret: str, code: str, now: datetime | None = None) -> bool:
        """Return ``True`` when ``code`` matches the current window or a neighbour."""
        candidate = "".join(code.split()) if code else ""
        if len(candidate) != self._digits or not candidate.isdigit():
            return False
        return self._totp(secret).verify(
            candidate,
            for_time=now or datetime.now(timezone.utc),
            valid_window=self._valid_window,
        )

    def provisioning_uri(self, issuer: str, account_label: str, secret: str) -> str:
        """Build the ``otpauth://totp/`` URI scanned by authenticator apps."""
        return self._totp(secret).provisioning_uri(name=account_label, issuer_name=issuer)
