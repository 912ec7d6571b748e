""" Utility for hashing operations. """

import hashlib
from pathlib import Path


CHUNK_SIZE = 65536  # 64KB


def calculate_sha256(file_path: Path) -> str:
    # Calculates the SHA-256 hash of a file.
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for data in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(data)
    return sha256.hexdigest()


def calculate_sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def storage_name(file_id: str) -> str:
    # file ids are caller-chosen; never use them as path components directly
    return calculate_sha256_bytes(file_id.encode("utf-8"))
