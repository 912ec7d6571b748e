import os
from typing import Dict

from argon2.low_level import Type, hash_secret_raw


DEFAULT_TIME_COST = 3
DEFAULT_MEMORY_COST = 65536
DEFAULT_PARALLELISM = 1


def generate_salt(length: int = 16) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def derive_passphrase_key(
    passphrase: bytes,
    salt: bytes,
    time_cost: int = DEFAULT_TIME_COST,
    memory_cost: int = DEFAULT_MEMORY_COST,
    parallelism: int = DEFAULT_PARALLELISM,
    key_len: int = 32,
) -> bytes:
    """
    Derive a key from a passphrase using Argon2id.
    Returns raw derived key bytes.
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    if not passphrase:
        raise ValueError("passphrase must not be empty")

    return hash_secret_raw(
        secret=passphrase,
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=key_len,
        type=Type.ID,
    )


def kdf_params_to_dict(salt: bytes, time_cost: int, memory_cost: int, parallelism: int) -> Dict:
    return {
        "algo": "argon2id",
        "salt": salt.hex(),
        "time": time_cost,
        "memory": memory_cost,
        "parallelism": parallelism,
    }


def kdf_params_from_dict(params: Dict) -> Dict:
    if params.get("algo", "argon2id") != "argon2id":
        raise ValueError(f"unsupported kdf: {params.get('algo')}")
    return {
        "salt": bytes.fromhex(params["salt"]),
        "time_cost": int(params.get("time", DEFAULT_TIME_COST)),
        "memory_cost": int(params.get("memory", DEFAULT_MEMORY_COST)),
        "parallelism": int(params.get("parallelism", DEFAULT_PARALLELISM)),
    }
