"""OS keystore integration using keyring for device-local private key storage.

The device private key is serialized as unencrypted PKCS#8 PEM, base64-encoded
and stored under a (service, identity) pair. Whether that is actually protected
depends on the keyring backend; use :func:`assess_keyring_backend` before
trusting it, and prefer a passphrase-locked identity file
(:mod:`sealkeep.security.identity`) where no secure backend exists.
"""
import base64
import binascii
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from .codec import load_private_key as _load_pem, serialize_private_key

try:
    import keyring
    from keyring.errors import PasswordDeleteError
except Exception:
    keyring = None
    PasswordDeleteError = None


def _require_keyring():
    if keyring is None:
        raise RuntimeError("keyring package is not available; install keyring to use keystore features")


def save_private_key(service: str, identity: str, private_key: rsa.RSAPrivateKey) -> None:
    """Persist ``private_key`` in the OS keystore under (service, identity)."""
    _require_keyring()
    pem = serialize_private_key(private_key)
    keyring.set_password(service, identity, base64.b64encode(pem).decode("ascii"))


def load_private_key(service: str, identity: str) -> Optional[rsa.RSAPrivateKey]:
    """Load the private key of ``identity``; returns None if nothing usable is stored."""
    _require_keyring()
    secret = keyring.get_password(service, identity)
    if secret is None:
        return None
    try:
        pem = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return None
    return _load_pem(pem)


def delete_private_key(service: str, identity: str) -> bool:
    """Remove the key from the OS keystore. Returns False if none was stored."""
    _require_keyring()
    try:
        keyring.delete_password(service, identity)
    except PasswordDeleteError:
        return False
    return True


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because the `keyring` package exposes different backends
    across platforms. If `keyring` is not available this returns (False, reason).
    """
    if keyring is None:
        return False, "keyring package is not installed"

    try:
        backend = keyring.get_keyring()
    except Exception as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File", "Null", "Fail")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    if "Win" in name or "Keychain" in name or "SecretService" in name or "KWallet" in name:
        return True, f"backend looks acceptable: {name} (priority={priority})"

    return True, f"unknown backend '{name}', treat with caution (priority={priority})"
