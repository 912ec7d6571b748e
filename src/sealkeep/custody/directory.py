"""Directory of record for public keys, keyed by identity."""

from __future__ import annotations

import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..core.exceptions import ConcurrentModificationError, IdentityNotFoundError
from ..core.hashing import calculate_sha256_bytes
from ..security.codec import load_public_key, serialize_public_key
from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)

PREFIX = "pubkey/"


def fingerprint_of(public_key: rsa.RSAPublicKey) -> str:
    """
    Stable fingerprint of a public key: SHA-256 over the DER
    SubjectPublicKeyInfo, truncated to 32 hex chars.
    """
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return calculate_sha256_bytes(der)[:32]


class KeyDirectory:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def publish(self, identity: str, public_key: rsa.RSAPublicKey, replace: bool = False) -> str:
        """
        Publish ``public_key`` for ``identity`` and return its fingerprint.

        Republishing the same key is a no-op. A different key for an identity
        that already has one is refused unless ``replace`` is set; existing
        wrapped keys will not open under a replaced key.
        """
        if not identity:
            raise ValueError("identity must not be empty")
        fpr = fingerprint_of(public_key)
        doc = {
            "identity": identity,
            "public_key": serialize_public_key(public_key).decode("ascii"),
            "fingerprint": fpr,
        }
        if self.store.put_if_absent(PREFIX + identity, doc):
            logger.info("published public key for %s (%s)", identity, fpr)
            return fpr

        current = self.store.get(PREFIX + identity)
        if current is not None and current.value.get("fingerprint") == fpr:
            return fpr
        if not replace:
            raise ValueError(f"identity {identity!r} already has a different public key")
        if current is None or not self.store.compare_and_set(PREFIX + identity, doc, current.revision):
            # lost a race; let the caller decide whether to retry
            raise ConcurrentModificationError(f"public key for {identity!r} changed concurrently")
        logger.warning("replaced public key for %s (now %s)", identity, fpr)
        return fpr

    def lookup(self, identity: str) -> rsa.RSAPublicKey:
        entry = self.store.get(PREFIX + identity)
        if entry is None:
            raise IdentityNotFoundError(f"no public key published for {identity!r}")
        return load_public_key(entry.value["public_key"].encode("ascii"))

    def fingerprint(self, identity: str) -> str:
        entry = self.store.get(PREFIX + identity)
        if entry is None:
            raise IdentityNotFoundError(f"no public key published for {identity!r}")
        return entry.value["fingerprint"]

    def identities(self):
        return [key[len(PREFIX):] for key, _ in self.store.scan(PREFIX)]
