"""
Base data models for custody records and key material
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from cryptography.hazmat.primitives.asymmetric import rsa


def b64e(data: bytes) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def b64d(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class KeyPair:
    """RSA key pair of one identity. The private half never leaves the device."""

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey


@dataclass(frozen=True)
class SealedPayload:
    """AES-GCM output: ciphertext, the 96-bit nonce and the 128-bit tag."""

    ciphertext: bytes
    nonce: bytes
    tag: bytes

    def blob(self) -> bytes:
        # layout handed to the blob store: ciphertext || tag
        return self.ciphertext + self.tag

    @classmethod
    def from_blob(cls, blob: bytes, nonce: bytes, tag_length: int = 16) -> "SealedPayload":
        if len(blob) < tag_length:
            return cls(ciphertext=b"", nonce=nonce, tag=bytes(blob))
        return cls(ciphertext=bytes(blob[:-tag_length]), nonce=nonce, tag=bytes(blob[-tag_length:]))


class WrappedKeyRecord:
    """
        Custody record binding a wrapped content key to one file and owner.

        ``wrapped_key`` opens under the owner's private key. Every identity in
        ``allowed_principals`` has its own entry in ``grantee_keys`` holding the
        same content key wrapped under that identity's public key.
    """

    __slots__ = (
        "file_id",
        "owner",
        "wrapped_key",
        "nonce",
        "grantee_keys",
        "step_up",
        "created_at",
        "revision",
    )

    def __init__(
        self,
        file_id: str,
        owner: str,
        wrapped_key: bytes,
        nonce: bytes,
        grantee_keys: Optional[Dict[str, bytes]] = None,
        step_up: bool = False,
        created_at: Optional[datetime] = None,
        revision: int = 0,
    ):
        if not file_id:
            raise ValueError("file_id must not be empty")
        if not owner:
            raise ValueError("owner must not be empty")
        self.file_id = file_id
        self.owner = owner
        self.wrapped_key = bytes(wrapped_key)
        self.nonce = bytes(nonce)
        self.grantee_keys = dict(grantee_keys) if grantee_keys else {}
        self.step_up = bool(step_up)
        self.created_at = created_at if created_at is not None else utc_now()
        self.revision = revision

    @property
    def allowed_principals(self) -> frozenset:
        return frozenset(self.grantee_keys)

    def is_principal(self, identity: str) -> bool:
        """True if identity is the owner or holds a grant."""
        return identity == self.owner or identity in self.grantee_keys

    def for_principal(self, identity: str) -> "WrappedKeyRecord":
        """
            Return the view released to ``identity``.

            The owner sees the full record. A grantee sees a copy whose
            ``wrapped_key`` is the one wrapped for them and whose grant table
            only lists themselves.
        """
        if identity == self.owner:
            return self
        if identity not in self.grantee_keys:
            raise KeyError(identity)
        return WrappedKeyRecord(
            file_id=self.file_id,
            owner=self.owner,
            wrapped_key=self.grantee_keys[identity],
            nonce=self.nonce,
            grantee_keys={identity: self.grantee_keys[identity]},
            step_up=self.step_up,
            created_at=self.created_at,
            revision=self.revision,
        )

    def to_dict(self) -> dict:
        """
            Convert the record to a JSON-safe dict (raw bytes as base64)
        """
        return {
            "file_id": self.file_id,
            "owner": self.owner,
            "wrapped_key": b64e(self.wrapped_key),
            "nonce": b64e(self.nonce),
            "allowed_principals": sorted(self.grantee_keys),
            "grantee_keys": {k: b64e(v) for k, v in sorted(self.grantee_keys.items())},
            "step_up": self.step_up,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict, revision: int = 0) -> "WrappedKeyRecord":
        """
            Create a record from a dict produced by to_dict
        """
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)

        grantee_keys = {k: b64d(v) for k, v in (data.get("grantee_keys") or {}).items()}
        listed = set(data.get("allowed_principals") or [])
        if listed != set(grantee_keys):
            raise ValueError("allowed_principals does not match grantee_keys")

        return cls(
            file_id=data["file_id"],
            owner=data["owner"],
            wrapped_key=b64d(data["wrapped_key"]),
            nonce=b64d(data["nonce"]),
            grantee_keys=grantee_keys,
            step_up=bool(data.get("step_up", False)),
            created_at=created_at,
            revision=revision,
        )

    def __repr__(self):
        return (
            f"WrappedKeyRecord(file_id={self.file_id!r}, owner={self.owner!r}, "
            f"principals={sorted(self.grantee_keys)!r})"
        )

    def __eq__(self, other):
        if not isinstance(other, WrappedKeyRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash(self.file_id)
