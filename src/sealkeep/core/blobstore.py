"""
Blob storage for sealed file bodies.

Structure Map for reference:
==============================
 - <blob_root>/
      - {name[:2]}/
          - {name}          (ciphertext || tag)
          - {name}.sha256   (hex digest of the blob)
==============================
``name`` is the SHA-256 of the file id, so arbitrary ids never become path
components. Blobs are opaque: without the matching custody record they are
unrecoverable ciphertext.
"""

from __future__ import annotations

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from .exceptions import BlobExistsError, BlobNotFoundError, StorageError
from .hashing import calculate_sha256, calculate_sha256_bytes, storage_name


class BlobStore(ABC):
    @abstractmethod
    def put(self, file_id: str, data: bytes, overwrite: bool = False) -> None:
        """Store a blob. Without ``overwrite`` an existing blob raises BlobExistsError."""

    @abstractmethod
    def get(self, file_id: str) -> bytes:
        """Return the blob or raise BlobNotFoundError."""

    @abstractmethod
    def delete(self, file_id: str) -> bool:
        """Remove the blob. False if there was none."""

    @abstractmethod
    def has(self, file_id: str) -> bool:
        ...


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, file_id, data, overwrite=False):
        with self._lock:
            if not overwrite and file_id in self._blobs:
                raise BlobExistsError(f"a blob is already stored for {file_id!r}")
            self._blobs[file_id] = bytes(data)

    def get(self, file_id):
        with self._lock:
            data = self._blobs.get(file_id)
        if data is None:
            raise BlobNotFoundError(f"no blob stored for {file_id!r}")
        return data

    def delete(self, file_id):
        with self._lock:
            return self._blobs.pop(file_id, None) is not None

    def has(self, file_id):
        with self._lock:
            return file_id in self._blobs


class FileBlobStore(BlobStore):
    """Blob storage on the local filesystem"""

    def __init__(self, root_path: Optional[str | Path] = None):
        self.root = (
            Path(root_path).expanduser() if root_path else Path.home() / ".sealkeep" / "blobs"
        )
        self.root.mkdir(parents=True, exist_ok=True)

    def blob_path(self, file_id: str) -> Path:
        name = storage_name(file_id)
        return self.root / name[:2] / name

    def digest_path(self, file_id: str) -> Path:
        path = self.blob_path(file_id)
        return path.with_name(path.name + ".sha256")

    def _write_atomic(self, destination: Path, data: bytes, exclusive: bool = False) -> None:
        # write to a temp sibling, then move it into place in one step;
        # exclusive placement uses link(), which fails if the target exists
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if exclusive:
                os.link(tmp_name, destination)
            else:
                os.replace(tmp_name, destination)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def put(self, file_id, data, overwrite=False):
        data = bytes(data)
        try:
            self._write_atomic(self.blob_path(file_id), data, exclusive=not overwrite)
            self._write_atomic(self.digest_path(file_id), calculate_sha256_bytes(data).encode("ascii"))
        except FileExistsError:
            raise BlobExistsError(f"a blob is already stored for {file_id!r}") from None
        except OSError as e:
            raise StorageError(f"failed to write blob for {file_id!r}: {e}") from e

    def get(self, file_id):
        path = self.blob_path(file_id)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise BlobNotFoundError(f"no blob stored for {file_id!r}") from None
        except OSError as e:
            raise StorageError(f"failed to read blob for {file_id!r}: {e}") from e

    def delete(self, file_id):
        path = self.blob_path(file_id)
        existed = path.exists()
        try:
            path.unlink(missing_ok=True)
            self.digest_path(file_id).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"failed to delete blob for {file_id!r}: {e}") from e
        return existed

    def has(self, file_id):
        return self.blob_path(file_id).exists()

    def verify(self, file_id: str) -> bool:
        """True if the blob on disk still matches the digest written with it."""
        path = self.blob_path(file_id)
        digest = self.digest_path(file_id)
        if not path.exists() or not digest.exists():
            return False
        actual = calculate_sha256(path)
        return actual == digest.read_text(encoding="ascii").strip()
