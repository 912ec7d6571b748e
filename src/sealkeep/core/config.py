"""Runtime configuration for SealKeep."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _default_root() -> Path:
    return Path.home() / ".sealkeep"


@dataclass
class SealKeepConfig:
    """
    Settings shared by custody, the gate and client sessions.

    - ``data_root``: directory for the database, blobs and identity files
    - ``db_path``: SQLite file for custody records; defaults under data_root
    - ``store_provider``: ``sqlite`` or ``memory``
    - ``require_step_up``: default step-up policy for newly stored files
    - ``conceal_existence``: answer unauthorized fetches with KeyNotFoundError
    - ``session_ttl_seconds``: lifetime of an unlocked key session
    - ``call_timeout_seconds``: per-call timeout for custody/blob collaborators
    - ``keyring_service``: service name for OS keystore entries
    """

    data_root: Path = field(default_factory=_default_root)
    db_path: Optional[Path] = None
    store_provider: str = "sqlite"
    require_step_up: bool = False
    conceal_existence: bool = True
    session_ttl_seconds: float = 300.0
    call_timeout_seconds: Optional[float] = 10.0
    keyring_service: str = "sealkeep"

    def __post_init__(self):
        self.data_root = Path(self.data_root).expanduser()
        if self.db_path is None:
            self.db_path = self.data_root / "custody.db"
        else:
            self.db_path = Path(self.db_path).expanduser()
        if self.store_provider not in ("sqlite", "memory"):
            raise ValueError(f"Unknown store provider: {self.store_provider}")
        if self.call_timeout_seconds is not None and self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be positive")

    @property
    def blob_root(self) -> Path:
        return self.data_root / "blobs"

    @property
    def identity_root(self) -> Path:
        return self.data_root / "identities"

    def identity_path(self, identity: str) -> Path:
        return self.identity_root / f"{identity}.json"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "SealKeepConfig":
        """
        Build a config from ``SEALKEEP_*`` environment variables.

        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        values = {}
        if env.get("SEALKEEP_HOME"):
            values["data_root"] = Path(env["SEALKEEP_HOME"])
        if env.get("SEALKEEP_DB"):
            values["db_path"] = Path(env["SEALKEEP_DB"])
        if env.get("SEALKEEP_STORE"):
            values["store_provider"] = env["SEALKEEP_STORE"]
        values["require_step_up"] = _flag(env.get("SEALKEEP_REQUIRE_STEP_UP"), False)
        values["conceal_existence"] = _flag(env.get("SEALKEEP_CONCEAL_EXISTENCE"), True)
        if env.get("SEALKEEP_SESSION_TTL"):
            values["session_ttl_seconds"] = float(env["SEALKEEP_SESSION_TTL"])
        if env.get("SEALKEEP_TIMEOUT"):
            timeout = float(env["SEALKEEP_TIMEOUT"])
            values["call_timeout_seconds"] = timeout if timeout > 0 else None
        if env.get("SEALKEEP_KEYRING_SERVICE"):
            values["keyring_service"] = env["SEALKEEP_KEYRING_SERVICE"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
