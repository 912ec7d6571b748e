"""Tests for custody record and payload models."""

from datetime import datetime, timezone

import pytest

from sealkeep.core.models import SealedPayload, WrappedKeyRecord


@pytest.fixture
def record() -> WrappedKeyRecord:
    return WrappedKeyRecord(
        file_id="report",
        owner="alice",
        wrapped_key=b"\x01" * 256,
        nonce=b"\x02" * 12,
        grantee_keys={"bob": b"\x03" * 256},
        step_up=True,
        created_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        revision=4,
    )


def test_sealed_payload_blob_layout():
    payload = SealedPayload(ciphertext=b"cipher", nonce=b"n" * 12, tag=b"t" * 16)
    assert payload.blob() == b"cipher" + b"t" * 16
    assert SealedPayload.from_blob(payload.blob(), payload.nonce) == payload


def test_sealed_payload_from_short_blob():
    payload = SealedPayload.from_blob(b"abc", b"n" * 12)
    assert payload.ciphertext == b""
    assert payload.tag == b"abc"


def test_record_to_dict_from_dict_roundtrip(record):
    data = record.to_dict()
    assert data["allowed_principals"] == ["bob"]
    assert isinstance(data["wrapped_key"], str)

    restored = WrappedKeyRecord.from_dict(data, revision=4)
    assert restored == record
    assert restored.revision == 4
    assert restored.grantee_keys == {"bob": b"\x03" * 256}
    assert restored.created_at == record.created_at


def test_from_dict_rejects_mismatched_principals(record):
    data = record.to_dict()
    data["allowed_principals"] = ["bob", "mallory"]
    with pytest.raises(ValueError):
        WrappedKeyRecord.from_dict(data)


def test_allowed_principals_match_grantee_keys(record):
    assert record.allowed_principals == frozenset({"bob"})
    record.grantee_keys["carol"] = b"\x04" * 256
    assert record.allowed_principals == frozenset({"bob", "carol"})


def test_is_principal(record):
    assert record.is_principal("alice")
    assert record.is_principal("bob")
    assert not record.is_principal("mallory")


def test_for_principal_owner_sees_full_record(record):
    assert record.for_principal("alice") is record


def test_for_principal_grantee_sees_own_wrapped_key(record):
    view = record.for_principal("bob")
    assert view.wrapped_key == b"\x03" * 256
    assert view.grantee_keys == {"bob": b"\x03" * 256}
    assert view.owner == "alice"
    assert view.nonce == record.nonce


def test_for_principal_rejects_stranger(record):
    with pytest.raises(KeyError):
        record.for_principal("mallory")


@pytest.mark.parametrize("field", ["file_id", "owner"])
def test_record_requires_ids(field):
    kwargs = {"file_id": "f", "owner": "o", "wrapped_key": b"w", "nonce": b"n" * 12}
    kwargs[field] = ""
    with pytest.raises(ValueError):
        WrappedKeyRecord(**kwargs)
