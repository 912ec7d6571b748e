"""Small helper to build a SealKeep context for the command line."""

from __future__ import annotations

import getpass
import os
from dataclasses import dataclass
from typing import Optional

from sealkeep.core.blobstore import FileBlobStore
from sealkeep.core.config import SealKeepConfig
from sealkeep.core.envelope import EnvelopeSession
from sealkeep.custody import CustodyService, open_custody
from sealkeep.security.session import KeySession

PASSPHRASE_ENV = "SEALKEEP_PASSPHRASE"
IDENTITY_ENV = "SEALKEEP_IDENTITY"


@dataclass
class AppContext:
    """Container for runtime objects the commands need."""

    config: SealKeepConfig
    service: CustodyService
    blobs: FileBlobStore
    identity: str

    def close(self) -> None:
        self.service.close()


def resolve_identity(identity: Optional[str] = None) -> str:
    return identity or os.getenv(IDENTITY_ENV) or getpass.getuser()


def read_passphrase(prompt: str = "Passphrase: ") -> str:
    """
    Return the identity passphrase.

    ``SEALKEEP_PASSPHRASE`` wins so scripts can run without a prompt.
    """
    passphrase = os.getenv(PASSPHRASE_ENV)
    if passphrase:
        return passphrase
    return getpass.getpass(prompt)


def build_context(config: Optional[SealKeepConfig] = None, identity: Optional[str] = None) -> AppContext:
    """Open custody storage and the blob store under the configured data root."""
    config = config or SealKeepConfig.from_env()
    config.data_root.mkdir(parents=True, exist_ok=True)
    return AppContext(
        config=config,
        service=open_custody(config),
        blobs=FileBlobStore(config.blob_root),
        identity=resolve_identity(identity),
    )


def open_envelope(ctx: AppContext, passphrase: Optional[str] = None) -> EnvelopeSession:
    """Unlock the identity file of ``ctx.identity`` and return a session for it."""
    path = ctx.config.identity_path(ctx.identity)
    if not path.exists():
        raise FileNotFoundError(f"no identity file for {ctx.identity!r}; run 'sealkeep keygen' first")
    keys = KeySession.from_identity_file(
        path,
        passphrase if passphrase is not None else read_passphrase(),
        ttl_seconds=ctx.config.session_ttl_seconds,
    )
    if keys.identity != ctx.identity:
        keys.lock()
        raise ValueError(f"identity file belongs to {keys.identity!r}, not {ctx.identity!r}")
    return EnvelopeSession(
        keys=keys,
        custody=ctx.service.custody,
        blobs=ctx.blobs,
        directory=ctx.service.directory,
        timeout=ctx.config.call_timeout_seconds,
    )
