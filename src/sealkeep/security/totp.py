"""RFC 6238 time-based one-time codes (6 digits, HMAC-SHA1, 30 s steps).

Secrets travel as unpadded base32, the format authenticator apps expect.
Verification accepts the current step and ``window`` steps on either side and
reports which step matched, so the caller can mark that step consumed.
"""

import base64
import binascii
import hmac
import os
import time
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.twofactor.totp import TOTP


TIME_STEP = 30
DIGITS = 6
WINDOW = 1


def generate_secret(length: int = 20) -> str:
    """Return a fresh base32 secret. RFC 4226 asks for at least 128 bits."""
    if length < 16:
        length = 16
    return base64.b32encode(os.urandom(length)).decode("ascii").rstrip("=")


def decode_secret(secret_b32: str) -> bytes:
    s = secret_b32.strip().replace(" ", "").upper()
    pad = "=" * ((8 - len(s) % 8) % 8)
    try:
        return base64.b32decode(s + pad)
    except (binascii.Error, ValueError) as e:
        raise ValueError("TOTP secret is not valid base32") from e


def _totp(secret_b32: str, time_step: int) -> TOTP:
    return TOTP(decode_secret(secret_b32), DIGITS, hashes.SHA1(), time_step)


def counter_at(now: float, time_step: int = TIME_STEP) -> int:
    return int(now // time_step)


def generate_code(secret_b32: str, now: Optional[float] = None, time_step: int = TIME_STEP) -> str:
    if now is None:
        now = time.time()
    return _totp(secret_b32, time_step).generate(now).decode("ascii")


def match_counter(
    secret_b32: str,
    code: str,
    now: Optional[float] = None,
    window: int = WINDOW,
    time_step: int = TIME_STEP,
) -> Optional[int]:
    """
    Return the time step counter ``code`` is valid for, or None.

    Every step in the window is compared so timing does not reveal which one
    matched.
    """
    if not code or not code.isdigit() or len(code) != DIGITS:
        return None
    if now is None:
        now = time.time()

    totp = _totp(secret_b32, time_step)
    current = counter_at(now, time_step)
    matched = None
    for offset in range(-window, window + 1):
        counter = current + offset
        if counter < 0:
            continue
        expected = totp.generate(counter * time_step)
        if hmac.compare_digest(expected, code.encode("ascii")) and matched is None:
            matched = counter
    return matched
