"""
Client-side envelope session.

EnvelopeSession is the only place where a plaintext content key and file
bytes meet. It drives:

- write: generate key -> seal -> wrap for the owner -> blob put -> custody store
- read:  custody fetch -> blob get -> unwrap -> open

The file id is bound into the AES-GCM associated data, so a sealed body only
opens under the record it was written for.

Calls to custody and the blob store run with the session timeout; an expired
call raises CustodyTimeoutError and is never retried here. The only local
recovery is compensating cleanup of a blob whose key could not be stored.
An expired call may still complete in the background, so its blob is
listed in ``orphaned_blobs`` rather than cleaned up.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, List, Optional, TypeVar

from ..custody.custody import KeyCustody
from ..custody.directory import KeyDirectory
from ..security import codec
from ..security.session import KeySession, scoped_key
from .blobstore import BlobStore
from .exceptions import (
    AuthenticationFailedError,
    CustodyTimeoutError,
    DecryptionFailedError,
    ForbiddenError,
    UnwrapFailedError,
)
from .models import SealedPayload, WrappedKeyRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


def file_aad(file_id: str) -> bytes:
    return f"sealkeep:file:{file_id}".encode("utf-8")


class EnvelopeSession:
    def __init__(
        self,
        keys: KeySession,
        custody: KeyCustody,
        blobs: BlobStore,
        directory: KeyDirectory,
        timeout: Optional[float] = None,
    ):
        self.keys = keys
        self.custody = custody
        self.blobs = blobs
        self.directory = directory
        self.timeout = timeout
        # blobs that may not match a key record; to be collected or repaired
        self.orphaned_blobs: List[str] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def identity(self) -> str:
        return self.keys.identity

    # ------------------------------------------------------------------
    # collaborator calls
    # ------------------------------------------------------------------

    def _call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        if self.timeout is None:
            return fn(*args, **kwargs)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="sealkeep-call")
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            name = getattr(fn, "__qualname__", repr(fn))
            raise CustodyTimeoutError(f"{name} did not finish within {self.timeout}s") from None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def __enter__(self) -> "EnvelopeSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------

    def publish_identity(self, replace: bool = False) -> str:
        """Publish this session's public key to the directory; returns its fingerprint."""
        return self._call(self.directory.publish, self.identity, self.keys.public_key, replace=replace)

    # ------------------------------------------------------------------
    # write path
    # ------------------------------------------------------------------

    def _seal_for_owner(self, file_id: str, plaintext: bytes):
        with scoped_key(codec.generate_content_key()) as key:
            sealed = codec.seal(key, plaintext, associated_data=file_aad(file_id))
            wrapped = codec.wrap(key, self.keys.public_key)
        return sealed, wrapped

    def _discard_orphan(self, file_id: str) -> None:
        try:
            self._call(self.blobs.delete, file_id)
        except Exception:
            logger.exception("could not delete orphaned blob %s; marked for collection", file_id)
            self.orphaned_blobs.append(file_id)
        else:
            logger.info("deleted orphaned blob %s after failed key store", file_id)

    def put(self, file_id: str, plaintext: bytes, step_up: Optional[bool] = None) -> WrappedKeyRecord:
        """
        Encrypt ``plaintext`` and hand blob and wrapped key to their stores.

        The blob is written exclusively, so an id already in use fails before
        anything changes. If custody refuses the key afterwards the blob is
        deleted again and the custody error propagates.
        """
        sealed, wrapped = self._seal_for_owner(file_id, plaintext)
        try:
            self._call(self.blobs.put, file_id, sealed.blob())
        except CustodyTimeoutError:
            # the write may still land with no record behind it
            self.orphaned_blobs.append(file_id)
            raise
        try:
            record = self._call(self.custody.store, file_id, self.identity, wrapped, sealed.nonce, step_up)
        except CustodyTimeoutError:
            # the store may still commit; leave the blob for collection
            self.orphaned_blobs.append(file_id)
            raise
        except Exception:
            self._discard_orphan(file_id)
            raise
        logger.info("stored %s (%d bytes sealed)", file_id, len(sealed.ciphertext))
        return record

    def _restore_blob(self, file_id: str, previous: bytes) -> None:
        try:
            self._call(self.blobs.put, file_id, previous, overwrite=True)
        except Exception:
            logger.exception("could not restore previous blob for %s; marked for repair", file_id)
            self.orphaned_blobs.append(file_id)

    def replace(self, file_id: str, plaintext: bytes, proof: Optional[str] = None) -> WrappedKeyRecord:
        """
        Re-encrypt an existing file under a fresh content key.

        Grants are dropped by custody; share again afterwards. If the custody
        update is refused, the previous blob is written back. A timed-out
        call may still complete, so nothing is restored and the file is
        marked in ``orphaned_blobs`` instead.
        """
        current = self._call(self.custody.fetch, file_id, self.identity, proof)
        if current.owner != self.identity:
            raise ForbiddenError(f"only the owner may change file {file_id!r}")
        previous = self._call(self.blobs.get, file_id)

        sealed, wrapped = self._seal_for_owner(file_id, plaintext)
        try:
            self._call(self.blobs.put, file_id, sealed.blob(), overwrite=True)
        except CustodyTimeoutError:
            self.orphaned_blobs.append(file_id)
            raise
        try:
            return self._call(self.custody.update, file_id, self.identity, wrapped, sealed.nonce)
        except CustodyTimeoutError:
            logger.warning("custody update for %s timed out; blob left for repair", file_id)
            self.orphaned_blobs.append(file_id)
            raise
        except Exception:
            logger.warning("custody update failed for %s; restoring previous blob", file_id)
            self._restore_blob(file_id, previous)
            raise

    # ------------------------------------------------------------------
    # read path
    # ------------------------------------------------------------------

    def _unwrap(self, record: WrappedKeyRecord) -> bytearray:
        try:
            return codec.unwrap(record.wrapped_key, self.keys.private_key())
        except UnwrapFailedError as e:
            raise DecryptionFailedError(f"cannot unwrap key for file {record.file_id!r}") from e

    def get(self, file_id: str, proof: Optional[str] = None) -> bytes:
        """Fetch, unwrap and open a file. Integrity failures raise DecryptionFailedError."""
        record = self._call(self.custody.fetch, file_id, self.identity, proof)
        blob = self._call(self.blobs.get, file_id)
        sealed = SealedPayload.from_blob(blob, record.nonce)
        with scoped_key(self._unwrap(record)) as key:
            try:
                return codec.open_sealed(
                    key, sealed.ciphertext, sealed.nonce, sealed.tag, associated_data=file_aad(file_id)
                )
            except AuthenticationFailedError as e:
                raise DecryptionFailedError(f"file {file_id!r} failed authentication") from e

    # ------------------------------------------------------------------
    # sharing
    # ------------------------------------------------------------------

    def share(self, file_id: str, grantee: str, proof: Optional[str] = None) -> WrappedKeyRecord:
        """Unwrap the owner's key once and re-wrap it under ``grantee``'s public key."""
        record = self._call(self.custody.fetch, file_id, self.identity, proof)
        if record.owner != self.identity:
            raise ForbiddenError(f"only the owner may share file {file_id!r}")
        grantee_key = self._call(self.directory.lookup, grantee)
        with scoped_key(self._unwrap(record)) as key:
            wrapped = codec.wrap(key, grantee_key)
        return self._call(self.custody.grant, file_id, self.identity, grantee, wrapped)

    def unshare(self, file_id: str, grantee: str) -> bool:
        return self._call(self.custody.revoke, file_id, self.identity, grantee)

    def remove(self, file_id: str) -> None:
        """Delete the key record, then the blob it protects."""
        self._call(self.custody.delete, file_id, self.identity)
        try:
            self._call(self.blobs.delete, file_id)
        except Exception:
            self.orphaned_blobs.append(file_id)
            raise

    def list_files(self) -> List[WrappedKeyRecord]:
        return self._call(self.custody.list_files, self.identity)

    def shared_with_me(self) -> List[WrappedKeyRecord]:
        return self._call(self.custody.list_shared_with, self.identity)
