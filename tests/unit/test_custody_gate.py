"""
Unit tests for the access gate: ownership, grants, TOTP step-up and replay.
"""

import pytest

from sealkeep.core.exceptions import (
    AccessDeniedError,
    CodeReplayedError,
    ForbiddenError,
    KeyNotFoundError,
    StepUpRequiredError,
)
from sealkeep.core.models import WrappedKeyRecord
from sealkeep.custody.gate import USED_CODE_PREFIX, AccessGate, GateState
from sealkeep.custody.identity import InMemoryIdentityService
from sealkeep.custody.kvstore import MemoryKeyValueStore
from sealkeep.security import totp

NOW = 1_700_000_010.0
STEP = totp.TIME_STEP


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def secret():
    return totp.generate_secret()


@pytest.fixture
def clock():
    now = [NOW]
    return now


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def gate(secret, store, clock):
    identities = InMemoryIdentityService({"alice": secret})
    return AccessGate(identities, store, clock=lambda: clock[0])


def _record(step_up=False, grantees=None):
    return WrappedKeyRecord(
        file_id="report",
        owner="alice",
        wrapped_key=b"w" * 256,
        nonce=b"n" * 12,
        grantee_keys=grantees or {},
        step_up=step_up,
    )


def _code(secret, offset=0):
    return totp.generate_code(secret, now=NOW + offset * STEP)


# ==============================================================================
# Tests: Ownership
# ==============================================================================

def test_owner_without_step_up_is_authorized(gate):
    decision = gate.evaluate(_record(), "alice")
    assert decision.authorized
    assert decision.trail == [GateState.RECEIVED, GateState.OWNERSHIP_CHECKED, GateState.AUTHORIZED]


def test_grantee_is_authorized(gate):
    assert gate.evaluate(_record(grantees={"bob": b"k" * 256}), "bob").authorized


def test_missing_record_is_not_found(gate):
    decision = gate.evaluate(None, "alice")
    assert decision.state is GateState.DENIED
    assert decision.error is KeyNotFoundError


def test_stranger_is_concealed_by_default(gate):
    decision = gate.evaluate(_record(), "mallory")
    assert decision.error is KeyNotFoundError
    assert decision.trail == [GateState.RECEIVED, GateState.DENIED]


def test_stranger_is_forbidden_when_existence_is_not_concealed(secret, store):
    gate = AccessGate(InMemoryIdentityService({"alice": secret}), store, conceal_existence=False)
    assert gate.evaluate(_record(), "mallory").error is ForbiddenError
    assert gate.evaluate(None, "mallory").error is KeyNotFoundError


def test_authorize_raises_same_error_for_missing_and_foreign(gate):
    with pytest.raises(KeyNotFoundError) as missing:
        gate.authorize(None, "mallory", file_id="report")
    with pytest.raises(KeyNotFoundError) as foreign:
        gate.authorize(_record(), "mallory")
    assert str(missing.value) == str(foreign.value)


def test_access_errors_share_a_base(gate):
    with pytest.raises(AccessDeniedError):
        gate.authorize(_record(), "mallory")


def test_empty_requester_is_refused(gate):
    assert not gate.evaluate(_record(), "").authorized


# ==============================================================================
# Tests: Step-up
# ==============================================================================

@pytest.mark.parametrize("offset", [-1, 0, 1])
def test_step_up_accepts_codes_in_window(gate, secret, offset):
    decision = gate.evaluate(_record(step_up=True), "alice", _code(secret, offset))
    assert decision.authorized
    assert decision.counter == totp.counter_at(NOW) + offset
    assert GateState.STEP_UP_PENDING in decision.trail


@pytest.mark.parametrize("offset", [-2, 2])
def test_step_up_rejects_codes_outside_window(gate, secret, offset):
    decision = gate.evaluate(_record(step_up=True), "alice", _code(secret, offset))
    assert decision.error is StepUpRequiredError


def test_step_up_missing_code(gate):
    decision = gate.evaluate(_record(step_up=True), "alice")
    assert decision.error is StepUpRequiredError
    assert decision.trail[-2] is GateState.STEP_UP_PENDING


def test_step_up_without_registered_secret(gate, secret):
    record = _record(step_up=True, grantees={"bob": b"k" * 256})
    decision = gate.evaluate(record, "bob", _code(secret))
    assert decision.error is StepUpRequiredError


def test_step_up_is_checked_after_ownership(gate, secret):
    # a stranger with a valid code still gets the ownership refusal
    decision = gate.evaluate(_record(step_up=True), "mallory", _code(secret))
    assert decision.error is KeyNotFoundError


def test_code_replay_in_same_step_is_rejected(gate, secret):
    code = _code(secret)
    assert gate.evaluate(_record(step_up=True), "alice", code).authorized

    decision = gate.evaluate(_record(step_up=True), "alice", code)
    assert decision.error is CodeReplayedError

    with pytest.raises(CodeReplayedError):
        gate.authorize(_record(step_up=True), "alice", code)


def test_replayed_code_counts_as_step_up_required(gate, secret):
    code = _code(secret)
    gate.authorize(_record(step_up=True), "alice", code)
    with pytest.raises(StepUpRequiredError, match="step-up authentication required"):
        gate.authorize(_record(step_up=True), "alice", code)


def test_replay_is_tracked_across_files(gate, secret):
    code = _code(secret)
    gate.authorize(_record(step_up=True), "alice", code)
    other = WrappedKeyRecord("other", "alice", b"w" * 256, b"n" * 12, step_up=True)
    with pytest.raises(CodeReplayedError):
        gate.authorize(other, "alice", code)


def test_next_step_code_is_accepted_after_replay(gate, secret, clock):
    gate.authorize(_record(step_up=True), "alice", _code(secret))
    clock[0] = NOW + STEP
    assert gate.evaluate(_record(step_up=True), "alice", _code(secret, 1)).authorized


def test_invalid_code_does_not_consume_step(gate, secret, store):
    valid = _code(secret)
    wrong = f"{(int(valid) + 1) % 10 ** 6:06d}"
    assert gate.evaluate(_record(step_up=True), "alice", wrong).error is StepUpRequiredError
    assert store.scan(USED_CODE_PREFIX) == []
    assert gate.evaluate(_record(step_up=True), "alice", valid).authorized


def test_old_markers_are_pruned(gate, secret, store, clock):
    gate.authorize(_record(step_up=True), "alice", _code(secret))
    clock[0] = NOW + 5 * STEP
    gate.authorize(_record(step_up=True), "alice", totp.generate_code(secret, now=clock[0]))

    counters = [entry.value["counter"] for _, entry in store.scan(f"{USED_CODE_PREFIX}alice/")]
    assert counters == [totp.counter_at(clock[0])]


class _FixedSecretService:
    def __init__(self, secret):
        self.secret = secret

    def totp_secret(self, identity):
        return self.secret


@pytest.mark.parametrize("bad_secret", ["not base32!", "AAAAAAAAAAAAA"])
def test_unusable_secret_is_a_step_up_denial(bad_secret, store, secret):
    # malformed base32 and a 64-bit key are both rejected by the TOTP layer
    gate = AccessGate(_FixedSecretService(bad_secret), store, clock=lambda: NOW)
    decision = gate.evaluate(_record(step_up=True), "alice", _code(secret))
    assert decision.error is StepUpRequiredError
    with pytest.raises(StepUpRequiredError):
        gate.authorize(_record(step_up=True), "alice", _code(secret))
