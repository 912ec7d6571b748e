"""
Identity service seam used by the access gate.

Authentication itself (passwords, sessions, tokens) happens elsewhere; the
gate only needs the registered TOTP secret of an already authenticated
identity.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..core.exceptions import ConcurrentModificationError
from ..security.totp import decode_secret, generate_secret
from .kvstore import KeyValueStore

PREFIX = "totp/"


class IdentityService(ABC):
    @abstractmethod
    def totp_secret(self, identity: str) -> Optional[str]:
        """Return the base32 TOTP secret registered for ``identity``, or None."""

    @abstractmethod
    def register_totp(self, identity: str, secret_b32: str) -> None:
        ...

    def enroll_totp(self, identity: str) -> str:
        """Generate, register and return a fresh secret for ``identity``."""
        secret = generate_secret()
        self.register_totp(identity, secret)
        return secret


class InMemoryIdentityService(IdentityService):
    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = {}
        self._lock = threading.Lock()
        for identity, secret in (secrets or {}).items():
            self.register_totp(identity, secret)

    def totp_secret(self, identity):
        with self._lock:
            return self._secrets.get(identity)

    def register_totp(self, identity, secret_b32):
        decode_secret(secret_b32)
        with self._lock:
            self._secrets[identity] = secret_b32


class KeyValueIdentityService(IdentityService):
    """TOTP enrolments kept in the custody key-value store under ``totp/<identity>``."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def totp_secret(self, identity):
        entry = self.store.get(PREFIX + identity)
        return entry.value["secret"] if entry else None

    def register_totp(self, identity, secret_b32):
        decode_secret(secret_b32)
        doc = {"identity": identity, "secret": secret_b32}
        if self.store.put_if_absent(PREFIX + identity, doc):
            return
        # re-enrolment replaces the previous secret
        current = self.store.get(PREFIX + identity)
        if current is None:
            stored = self.store.put_if_absent(PREFIX + identity, doc)
        else:
            stored = self.store.compare_and_set(PREFIX + identity, doc, current.revision)
        if not stored:
            raise ConcurrentModificationError(f"TOTP enrolment for {identity!r} changed concurrently")

    def unregister_totp(self, identity: str) -> bool:
        return self.store.delete(PREFIX + identity)
