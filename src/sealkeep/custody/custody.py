"""
Key custody: durable wrapped-key records and gated release.

Records live in a :class:`~sealkeep.custody.kvstore.KeyValueStore` under
``file/<file_id>``. Creation is a single put-if-absent, so concurrent stores
of the same id produce exactly one winner and a record is either fully
visible or absent. Grant, revoke and update are read-modify-write cycles
serialized per file by a striped in-process lock and guarded in the store by the
record revision, so a concurrent writer elsewhere surfaces as
ConcurrentModificationError instead of a lost update.

Custody never sees a content key in the clear: grants arrive already
re-wrapped under the grantee's public key.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from ..core.exceptions import (
    ConcurrentModificationError,
    DuplicateFileError,
    ForbiddenError,
    KeyNotFoundError,
)
from ..core.models import WrappedKeyRecord
from .gate import AccessGate
from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)

PREFIX = "file/"
NONCE_BYTES = 12
LOCK_STRIPES = 64


class KeyCustody:
    def __init__(self, store: KeyValueStore, gate: AccessGate, require_step_up: bool = False):
        self.kv = store
        self.gate = gate
        self.require_step_up = require_step_up
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _key(file_id: str) -> str:
        if not file_id:
            raise ValueError("file_id must not be empty")
        return PREFIX + file_id

    def _file_lock(self, file_id: str) -> threading.Lock:
        # fixed stripe set; unrelated ids may share a lock
        return self._locks[hash(file_id) % LOCK_STRIPES]

    def _load(self, file_id: str) -> Optional[WrappedKeyRecord]:
        entry = self.kv.get(self._key(file_id))
        if entry is None:
            return None
        return WrappedKeyRecord.from_dict(entry.value, revision=entry.revision)

    def _load_for_owner(self, file_id: str, owner: str) -> WrappedKeyRecord:
        record = self._load(file_id)
        if record is None:
            raise KeyNotFoundError(f"no key available for file {file_id!r}")
        if record.owner != owner:
            error = self.gate.refusal(record, owner)
            logger.warning("owner operation refused: file=%s caller=%s", file_id, owner)
            if error is KeyNotFoundError:
                raise KeyNotFoundError(f"no key available for file {file_id!r}")
            raise ForbiddenError(f"only the owner may change file {file_id!r}")
        return record

    def _mutate(self, file_id: str, owner: str, change: Callable[[WrappedKeyRecord], bool]) -> WrappedKeyRecord:
        """
        Apply ``change`` to the owner's record and write it back.

        ``change`` edits the record in place and returns False when there is
        nothing to write.
        """
        with self._file_lock(file_id):
            record = self._load_for_owner(file_id, owner)
            if not change(record):
                return record
            if not self.kv.compare_and_set(self._key(file_id), record.to_dict(), record.revision):
                raise ConcurrentModificationError(f"record for {file_id!r} changed concurrently")
            record.revision += 1
            return record

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def store(
        self,
        file_id: str,
        owner: str,
        wrapped_key: bytes,
        nonce: bytes,
        step_up: Optional[bool] = None,
    ) -> WrappedKeyRecord:
        """Persist a new record. Raises DuplicateFileError if ``file_id`` is taken."""
        if len(nonce) != NONCE_BYTES:
            raise ValueError("nonce must be 96 bits")
        if not wrapped_key:
            raise ValueError("wrapped_key must not be empty")
        record = WrappedKeyRecord(
            file_id=file_id,
            owner=owner,
            wrapped_key=wrapped_key,
            nonce=nonce,
            step_up=self.require_step_up if step_up is None else step_up,
        )
        if not self.kv.put_if_absent(self._key(file_id), record.to_dict()):
            raise DuplicateFileError(f"a key record already exists for file {file_id!r}")
        record.revision = 1
        logger.info("stored key record: file=%s owner=%s step_up=%s", file_id, owner, record.step_up)
        return record

    def fetch(self, file_id: str, requester: str, proof: Optional[str] = None) -> WrappedKeyRecord:
        """Return the record view for ``requester`` once the gate authorizes it."""
        record = self._load(file_id)
        self.gate.authorize(record, requester, proof, file_id=file_id)
        return record.for_principal(requester)

    def grant(self, file_id: str, owner: str, grantee: str, wrapped_key_for_grantee: bytes) -> WrappedKeyRecord:
        """Record ``grantee`` with the content key re-wrapped under the grantee's public key."""
        if not grantee:
            raise ValueError("grantee must not be empty")
        if grantee == owner:
            raise ValueError("the owner already holds the key")
        if not wrapped_key_for_grantee:
            raise ValueError("wrapped key for grantee must not be empty")

        def change(record):
            record.grantee_keys[grantee] = bytes(wrapped_key_for_grantee)
            return True

        record = self._mutate(file_id, owner, change)
        logger.info("granted: file=%s grantee=%s", file_id, grantee)
        return record

    def revoke(self, file_id: str, owner: str, grantee: str) -> bool:
        """Drop the grantee's wrapped key. Returns False if there was no grant."""
        removed = []

        def change(record):
            if record.grantee_keys.pop(grantee, None) is None:
                return False
            removed.append(grantee)
            return True

        self._mutate(file_id, owner, change)
        if removed:
            logger.info("revoked: file=%s grantee=%s", file_id, grantee)
        return bool(removed)

    def update(self, file_id: str, owner: str, wrapped_key: bytes, nonce: bytes) -> WrappedKeyRecord:
        """
        Point the record at a re-sealed body with a new content key.

        Existing grants are dropped because their wrapped keys open the old
        content key; the owner has to share again.
        """
        if len(nonce) != NONCE_BYTES:
            raise ValueError("nonce must be 96 bits")

        def change(record):
            record.wrapped_key = bytes(wrapped_key)
            record.nonce = bytes(nonce)
            record.grantee_keys.clear()
            return True

        record = self._mutate(file_id, owner, change)
        logger.info("updated key record: file=%s", file_id)
        return record

    def delete(self, file_id: str, owner: str) -> None:
        with self._file_lock(file_id):
            record = self._load_for_owner(file_id, owner)
            if not self.kv.delete(self._key(file_id), record.revision):
                raise ConcurrentModificationError(f"record for {file_id!r} changed concurrently")
        logger.info("deleted key record: file=%s", file_id)

    def list_files(self, owner: str) -> List[WrappedKeyRecord]:
        """Records owned by ``owner``, oldest first."""
        records = [
            WrappedKeyRecord.from_dict(entry.value, revision=entry.revision)
            for _, entry in self.kv.scan(PREFIX)
            if entry.value.get("owner") == owner
        ]
        return sorted(records, key=lambda r: (r.created_at, r.file_id))

    def list_shared_with(self, identity: str) -> List[WrappedKeyRecord]:
        """Record views for files other owners granted to ``identity``."""
        records = []
        for _, entry in self.kv.scan(PREFIX):
            if identity in (entry.value.get("allowed_principals") or []):
                record = WrappedKeyRecord.from_dict(entry.value, revision=entry.revision)
                records.append(record.for_principal(identity))
        return sorted(records, key=lambda r: (r.created_at, r.file_id))
