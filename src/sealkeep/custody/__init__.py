"""Key custody: persistence, access gate, key directory and identity seam."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.config import SealKeepConfig
from .custody import KeyCustody
from .directory import KeyDirectory, fingerprint_of
from .gate import AccessGate, GateDecision, GateState
from .identity import IdentityService, InMemoryIdentityService, KeyValueIdentityService
from .kvstore import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore, Versioned


def load_store(config: Optional[SealKeepConfig] = None) -> KeyValueStore:
    """
    Factory resolver for the persistence engine.

        - sqlite (default)
        - memory
    """
    config = config or SealKeepConfig.from_env()
    if config.store_provider == "memory":
        return MemoryKeyValueStore()
    return SQLiteKeyValueStore(config.db_path)


@dataclass
class CustodyService:
    """Custody, gate, directory and identity service wired to one store."""

    store: KeyValueStore
    custody: KeyCustody
    gate: AccessGate
    directory: KeyDirectory
    identities: IdentityService

    def close(self) -> None:
        self.store.close()


def open_custody(
    config: Optional[SealKeepConfig] = None,
    store: Optional[KeyValueStore] = None,
    identities: Optional[IdentityService] = None,
    clock=None,
) -> CustodyService:
    config = config or SealKeepConfig.from_env()
    store = store if store is not None else load_store(config)
    identities = identities if identities is not None else KeyValueIdentityService(store)
    gate_kwargs = {"conceal_existence": config.conceal_existence}
    if clock is not None:
        gate_kwargs["clock"] = clock
    gate = AccessGate(identities, store, **gate_kwargs)
    custody = KeyCustody(store, gate, require_step_up=config.require_step_up)
    return CustodyService(
        store=store,
        custody=custody,
        gate=gate,
        directory=KeyDirectory(store),
        identities=identities,
    )


__all__ = [
    "AccessGate",
    "CustodyService",
    "GateDecision",
    "GateState",
    "IdentityService",
    "InMemoryIdentityService",
    "KeyCustody",
    "KeyDirectory",
    "KeyValueIdentityService",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "Versioned",
    "fingerprint_of",
    "load_store",
    "open_custody",
]
