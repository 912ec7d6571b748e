"""Envelope primitives: content keys, RSA-OAEP wrapping and AES-GCM sealing.

- Content key: 32 random bytes (AES-256), one per file
- Seal/open: AES-256-GCM, fresh 12-byte nonce per call, 16-byte tag kept apart
- Wrap/unwrap: RSA-OAEP with MGF1-SHA256 and SHA-256 under a 2048-bit key

Content keys are handed out as ``bytearray`` so callers can zero them once
they are done (see :func:`sealkeep.security.session.scoped_key`).
"""
import os
from typing import Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sealkeep.core.exceptions import (
    AuthenticationFailedError,
    CryptoUnavailableError,
    KeyTooLargeError,
    UnwrapFailedError,
)
from sealkeep.core.models import KeyPair, SealedPayload


CONTENT_KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
RSA_KEY_BITS = 2048
RSA_PUBLIC_EXPONENT = 65537

_UNWRAP_FAILED = "unable to unwrap content key"


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def _random(n: int) -> bytes:
    try:
        return os.urandom(n)
    except NotImplementedError as e:
        raise CryptoUnavailableError("no secure random source available") from e


def generate_content_key() -> bytearray:
    return bytearray(_random(CONTENT_KEY_BYTES))


def generate_key_pair(key_size: int = RSA_KEY_BITS) -> KeyPair:
    try:
        private_key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)
    except (UnsupportedAlgorithm, NotImplementedError) as e:
        raise CryptoUnavailableError(f"RSA key generation unavailable: {e}") from e
    return KeyPair(private_key=private_key, public_key=private_key.public_key())


def max_wrap_payload(public_key: rsa.RSAPublicKey) -> int:
    """Largest message RSA-OAEP(SHA-256) can carry under ``public_key``."""
    k = (public_key.key_size + 7) // 8
    return k - 2 * hashes.SHA256.digest_size - 2


def seal(content_key: bytes, plaintext: bytes, associated_data: Optional[bytes] = None) -> SealedPayload:
    if len(content_key) != CONTENT_KEY_BYTES:
        raise ValueError("content key must be 32 bytes")
    nonce = _random(NONCE_BYTES)
    out = AESGCM(bytes(content_key)).encrypt(nonce, plaintext, associated_data)
    return SealedPayload(ciphertext=out[:-TAG_BYTES], nonce=nonce, tag=out[-TAG_BYTES:])


def open_sealed(
    content_key: bytes,
    ciphertext: bytes,
    nonce: bytes,
    tag: bytes,
    associated_data: Optional[bytes] = None,
) -> bytes:
    # length problems are reported the same way as a bad tag
    if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
        raise AuthenticationFailedError("sealed payload is truncated or malformed")
    try:
        return AESGCM(bytes(content_key)).decrypt(nonce, bytes(ciphertext) + bytes(tag), associated_data)
    except InvalidTag as e:
        raise AuthenticationFailedError("authentication tag mismatch") from e
    except ValueError as e:
        raise AuthenticationFailedError(f"invalid sealed payload: {e}") from e


def wrap(content_key: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    limit = max_wrap_payload(public_key)
    if len(content_key) > limit:
        raise KeyTooLargeError(f"key of {len(content_key)} bytes exceeds OAEP limit of {limit} bytes")
    return public_key.encrypt(bytes(content_key), _oaep())


def unwrap(wrapped_key: bytes, private_key: rsa.RSAPrivateKey) -> bytearray:
    try:
        raw = private_key.decrypt(bytes(wrapped_key), _oaep())
    except (ValueError, TypeError):
        # one message for every failure mode; do not chain the cause
        raise UnwrapFailedError(_UNWRAP_FAILED) from None
    if len(raw) != CONTENT_KEY_BYTES:
        raise UnwrapFailedError(_UNWRAP_FAILED)
    return bytearray(raw)


# ----------------------------------------------------------------------
# PEM helpers
# ----------------------------------------------------------------------

def serialize_public_key(public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_public_key(pem: bytes) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("public key is not an RSA key")
    return key


def serialize_private_key(private_key: rsa.RSAPrivateKey, passphrase: Optional[bytes] = None) -> bytes:
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase)
    else:
        encryption = serialization.NoEncryption()
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def load_private_key(pem: bytes, passphrase: Optional[bytes] = None) -> rsa.RSAPrivateKey:
    key = serialization.load_pem_private_key(pem, password=passphrase)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("private key is not an RSA key")
    return key
