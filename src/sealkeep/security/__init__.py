"""Security helpers: envelope primitives, TOTP, and device key handling for SealKeep.

This package provides:
- AES-256-GCM sealing and RSA-OAEP content key wrapping (codec)
- RFC 6238 one-time codes for step-up authentication (totp)
- Argon2id passphrase derivation and passphrase-locked identity files
- OS keyring storage for device private keys
- Explicit per-user key sessions with auto-lock
"""

from .codec import (
    generate_content_key,
    generate_key_pair,
    seal,
    open_sealed,
    wrap,
    unwrap,
)
from .identity import save_identity, load_identity
from .session import KeySession, scoped_key

__all__ = [
    "generate_content_key",
    "generate_key_pair",
    "seal",
    "open_sealed",
    "wrap",
    "unwrap",
    "save_identity",
    "load_identity",
    "KeySession",
    "scoped_key",
]
