"""Per-user key sessions holding an unlocked private key with auto-lock.

A KeySession binds one identity to its unlocked key pair and an expiry
timestamp. Sessions are plain objects handed to the code that needs them;
there is no process-wide current session. Calling ``private_key()`` returns
the key while the session is unlocked and not expired, otherwise it raises
SessionLockedError. ``lock()`` drops the key.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from sealkeep.core.exceptions import SessionLockedError
from sealkeep.core.models import KeyPair
from .identity import load_identity
from .keystore import assess_keyring_backend, load_private_key, save_private_key


def zero(buf: bytearray) -> None:
    """Overwrite a mutable key buffer in place."""
    for i in range(len(buf)):
        buf[i] = 0


@contextmanager
def scoped_key(key: bytearray) -> Iterator[bytearray]:
    """Yield ``key`` and zero it when the block exits, on success or error."""
    try:
        yield key
    finally:
        zero(key)


class KeySession:
    def __init__(self, identity: str, key_pair: KeyPair, ttl_seconds: Optional[float] = 300):
        """
        Args:
            identity: authenticated identity this session acts for
            key_pair: the identity's unlocked key pair
            ttl_seconds: time-to-live; None keeps the session open until lock()
        """
        if not identity:
            raise ValueError("identity must not be empty")
        self.identity = identity
        self._key_pair: Optional[KeyPair] = key_pair
        self._public_key = key_pair.public_key
        self._expires_at: Optional[float] = None
        if ttl_seconds is not None:
            self._expires_at = time.monotonic() + float(ttl_seconds)

    @classmethod
    def from_identity_file(cls, path: Path | str, passphrase: str, ttl_seconds: Optional[float] = 300) -> "KeySession":
        identity, key_pair = load_identity(path, passphrase)
        return cls(identity, key_pair, ttl_seconds=ttl_seconds)

    @classmethod
    def from_keyring(cls, service: str, identity: str, ttl_seconds: Optional[float] = 300) -> "KeySession":
        """Unlock a session from the OS keystore. Raises SessionLockedError if nothing is stored."""
        private_key = load_private_key(service, identity)
        if private_key is None:
            raise SessionLockedError(f"no private key in OS keystore for {identity!r}")
        key_pair = KeyPair(private_key=private_key, public_key=private_key.public_key())
        return cls(identity, key_pair, ttl_seconds=ttl_seconds)

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        # the public half stays available after lock
        return self._public_key

    @property
    def is_unlocked(self) -> bool:
        if self._key_pair is None:
            return False
        return self._expires_at is None or time.monotonic() <= self._expires_at

    def private_key(self) -> rsa.RSAPrivateKey:
        """Return the unlocked private key or raise if locked/expired."""
        if self._key_pair is None:
            raise SessionLockedError("Session is locked")
        if self._expires_at is not None and time.monotonic() > self._expires_at:
            self.lock()
            raise SessionLockedError("Session expired and was locked")
        return self._key_pair.private_key

    def extend(self, extra_seconds: float) -> None:
        """Extend session TTL by extra_seconds if unlocked."""
        if not self.is_unlocked:
            raise SessionLockedError("Session is locked")
        if self._expires_at is not None:
            self._expires_at += float(extra_seconds)

    def lock(self) -> None:
        """Drop the private key and lock the session."""
        self._key_pair = None
        self._expires_at = None

    def persist_to_keyring(self, service: str, force: bool = False) -> None:
        """
        Persist the private key to the OS keystore under (service, identity).

        Refuses when the keyring backend looks insecure unless ``force`` is set.
        """
        private_key = self.private_key()
        if not force:
            secure, msg = assess_keyring_backend()
            if not secure:
                raise RuntimeError(
                    f"refusing to persist private key to OS keystore: {msg}; "
                    "pass force=True to override if you understand the risk"
                )
        save_private_key(service, self.identity, private_key)

    def __enter__(self) -> "KeySession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.lock()

    def __repr__(self):
        state = "unlocked" if self.is_unlocked else "locked"
        return f"KeySession(identity={self.identity!r}, {state})"
