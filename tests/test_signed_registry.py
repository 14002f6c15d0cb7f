import pytest

from ufo_keyserver.errors import AlreadyExpired, NotFound, NotOwner
from ufo_keyserver.identity import Identity

from conftest import T0


def test_issue_and_verify(signed_registry, alice):
    record, reused = signed_registry.issue(alice, ttl=3600)
    assert not reused
    assert record.key.startswith("UFO.")
    result = signed_registry.verify(record.key, alice)
    assert result.valid
    assert result.expires_at == T0 + 3600


def test_identity_mismatch(signed_registry, alice, bob):
    record, _ = signed_registry.issue(alice)
    assert signed_registry.verify(record.key, bob).reason == "identity_mismatch"


def test_expired(signed_registry, alice, clock):
    record, _ = signed_registry.issue(alice, ttl=10)
    clock.advance(11)
    result = signed_registry.verify(record.key, alice)
    assert not result.valid
    assert result.reason == "expired"
    with pytest.raises(AlreadyExpired):
        signed_registry.extend(record.key, alice)


def test_tampered_and_garbage_tokens(signed_registry, alice):
    record, _ = signed_registry.issue(alice)
    tampered = record.key[:-1] + ("0" if record.key[-1] != "0" else "1")
    assert signed_registry.verify(tampered, alice).reason == "bad_signature"
    assert signed_registry.verify("UFO-AB12CD34-48H", alice).reason == "not_found"
    assert signed_registry.verify("", alice).reason == "missing_params"


def test_allow_list(signed_registry):
    assert signed_registry.verify("JJJMAX", Identity(uid="X", place="Y")).valid


def test_extend_resigns(signed_registry, alice):
    record, _ = signed_registry.issue(alice)
    result = signed_registry.extend(record.key, Identity(uid=alice.uid), 600)
    assert result.key != record.key
    assert result.expires_at == record.expires_at + 600
    assert signed_registry.verify(result.key, alice).expires_at == result.expires_at


def test_extend_errors(signed_registry, alice, bob):
    record, _ = signed_registry.issue(alice)
    with pytest.raises(NotOwner):
        signed_registry.extend(record.key, bob)
    with pytest.raises(NotFound):
        signed_registry.extend("junk", alice)


def test_sweep_is_noop(signed_registry):
    assert signed_registry.sweep() == 0
