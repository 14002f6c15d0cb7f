import pytest

from ufo_keyserver.errors import MissingParameter
from ufo_keyserver.identity import Identity, client_ip, explicit_identity, fingerprint_identity


def test_explicit_identity_normalizes():
    assert explicit_identity(" 42 ", "abc ") == Identity(uid="42", place="ABC")


@pytest.mark.parametrize("uid,place", [("", "1"), ("1", ""), (None, None), ("   ", "1")])
def test_explicit_identity_requires_both(uid, place):
    with pytest.raises(MissingParameter) as exc:
        explicit_identity(uid, place)
    assert exc.value.reason == "missing_uid_or_place"


def test_explicit_identity_uid_only():
    assert explicit_identity("42", None, require_place=False) == Identity(uid="42")


def test_fingerprint_is_stable_and_opaque():
    a = fingerprint_identity("1.2.3.4", "Roblox/WinInet")
    b = fingerprint_identity("1.2.3.4", "Roblox/WinInet")
    c = fingerprint_identity("1.2.3.5", "Roblox/WinInet")
    assert a == b
    assert a != c
    assert a.is_fingerprint
    assert "1.2.3.4" not in a.uid


def test_device_id_is_capped():
    long_id = "d" * 500
    assert fingerprint_identity("ip", "ua", long_id) == fingerprint_identity("other", "ua2", "d" * 128)
    assert fingerprint_identity("ip", "ua", long_id, max_device_length=200) != \
        fingerprint_identity("ip", "ua", "d" * 128, max_device_length=200)


def test_owns_ignores_missing_place():
    owner = Identity(uid="42", place="100")
    assert owner.owns(Identity(uid="42"))
    assert owner.owns(Identity(uid="42", place="100"))
    assert not owner.owns(Identity(uid="42", place="200"))
    assert not owner.owns(Identity(uid="43"))


def test_dict_round_trip():
    ident = Identity(uid="42", place="100")
    assert Identity.from_dict(ident.to_dict()) == ident
    assert Identity.from_dict(None) is None


def test_client_ip_prefers_forwarded_for():
    assert client_ip({"X-Forwarded-For": "9.9.9.9, 10.0.0.1"}, "127.0.0.1") == "9.9.9.9"
    assert client_ip({}, "127.0.0.1") == "127.0.0.1"
