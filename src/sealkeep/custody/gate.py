"""
Access gate in front of wrapped key release.

Each request walks a small state machine:

    RECEIVED -> OWNERSHIP_CHECKED -> STEP_UP_PENDING -> AUTHORIZED
         \\               \\                 \\
          +---------------+-----------------+--> DENIED

The ownership step passes for the owner and for identities holding a grant.
Files flagged ``step_up`` additionally need a TOTP code for the requester's
registered secret; the current 30 s step and one step either side are
accepted, and each (identity, step) is consumed at most once.

Every evaluation is a single deterministic pass with no retries or lockout.
Denial reasons go to the log; callers only see the generic error kinds.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Type

from ..core.exceptions import (
    AccessDeniedError,
    CodeReplayedError,
    ForbiddenError,
    KeyNotFoundError,
    SealKeepError,
    StepUpRequiredError,
)
from ..core.models import WrappedKeyRecord
from ..security import totp
from .identity import IdentityService
from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)

USED_CODE_PREFIX = "otp-used/"


class GateState(Enum):
    RECEIVED = "received"
    OWNERSHIP_CHECKED = "ownership_checked"
    STEP_UP_PENDING = "step_up_pending"
    AUTHORIZED = "authorized"
    DENIED = "denied"


@dataclass
class GateDecision:
    """Outcome of one evaluation; ``error`` is the caller-visible kind on denial."""

    state: GateState = GateState.RECEIVED
    reason: str = ""
    error: Optional[Type[SealKeepError]] = None
    counter: Optional[int] = None
    trail: List[GateState] = field(default_factory=lambda: [GateState.RECEIVED])

    @property
    def authorized(self) -> bool:
        return self.state is GateState.AUTHORIZED

    def advance(self, state: GateState) -> "GateDecision":
        self.state = state
        self.trail.append(state)
        return self

    def deny(self, error: Type[SealKeepError], reason: str) -> "GateDecision":
        self.error = error
        self.reason = reason
        return self.advance(GateState.DENIED)


class AccessGate:
    def __init__(
        self,
        identities: IdentityService,
        store: KeyValueStore,
        conceal_existence: bool = True,
        clock: Callable[[], float] = time.time,
        window: int = totp.WINDOW,
        time_step: int = totp.TIME_STEP,
    ):
        self.identities = identities
        self.store = store
        self.conceal_existence = conceal_existence
        self.clock = clock
        self.window = window
        self.time_step = time_step

    def refusal(self, record: Optional[WrappedKeyRecord], requester: str) -> Type[AccessDeniedError]:
        """Error kind for a requester who may not see ``record``."""
        if record is None or (self.conceal_existence and not record.is_principal(requester)):
            return KeyNotFoundError
        return ForbiddenError

    def evaluate(
        self,
        record: Optional[WrappedKeyRecord],
        requester: str,
        proof: Optional[str] = None,
    ) -> GateDecision:
        decision = GateDecision()

        if record is None:
            return decision.deny(KeyNotFoundError, "no record")
        if not requester or not record.is_principal(requester):
            return decision.deny(self.refusal(record, requester), "requester is neither owner nor grantee")
        decision.advance(GateState.OWNERSHIP_CHECKED)

        if not record.step_up:
            return decision.advance(GateState.AUTHORIZED)

        decision.advance(GateState.STEP_UP_PENDING)
        if not proof:
            return decision.deny(StepUpRequiredError, "one-time code missing")

        secret = self.identities.totp_secret(requester)
        if not secret:
            return decision.deny(StepUpRequiredError, "no TOTP secret registered")

        now = self.clock()
        try:
            counter = totp.match_counter(secret, proof, now=now, window=self.window, time_step=self.time_step)
        except ValueError as e:
            logger.error("unusable TOTP secret for %s: %s", requester, e)
            return decision.deny(StepUpRequiredError, "registered TOTP secret is unusable")
        if counter is None:
            return decision.deny(StepUpRequiredError, "one-time code invalid or expired")

        if not self._consume(requester, counter, now):
            return decision.deny(CodeReplayedError, f"one-time code for step {counter} already used")

        decision.counter = counter
        return decision.advance(GateState.AUTHORIZED)

    def authorize(
        self,
        record: Optional[WrappedKeyRecord],
        requester: str,
        proof: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> GateDecision:
        """Evaluate and raise the caller-visible error on denial."""
        decision = self.evaluate(record, requester, proof)
        if decision.authorized:
            return decision
        target = file_id or (record.file_id if record is not None else "?")
        logger.warning("key release denied: file=%s requester=%s reason=%s", target, requester, decision.reason)
        if decision.error in (StepUpRequiredError, CodeReplayedError):
            raise decision.error("step-up authentication required")
        raise decision.error(f"no key available for file {target!r}")

    # ------------------------------------------------------------------
    # consumed-code ledger
    # ------------------------------------------------------------------

    def _consume(self, identity: str, counter: int, now: float) -> bool:
        key = f"{USED_CODE_PREFIX}{identity}/{counter:012d}"
        if not self.store.put_if_absent(key, {"identity": identity, "counter": counter}):
            return False
        self._prune(identity, totp.counter_at(now, self.time_step))
        return True

    def _prune(self, identity: str, current: int) -> None:
        # markers below the window can never match again
        oldest_live = current - self.window
        for key, entry in self.store.scan(f"{USED_CODE_PREFIX}{identity}/"):
            if entry.value.get("counter", 0) < oldest_live:
                self.store.delete(key, entry.revision)
