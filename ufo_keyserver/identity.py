"""
Identity binding

A key is tied to whoever asked for it. That is either an explicit
``(uid, place)`` pair sent by the Roblox client, or a fingerprint hashed from
the caller's IP + User-Agent (or a device id the client keeps around).
Fingerprints are a best-effort anti-abuse signal; shared NAT addresses
collide and that is accepted.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import MissingParameter

FINGERPRINT_PREFIX = "FP-"


def normalize_part(value: Any) -> str:
    return str(value if value is not None else "").strip().upper()


def normalize_key(value: Any) -> str:
    """Uppercase and drop everything outside ``[A-Z0-9-]``."""
    return re.sub(r"[^A-Z0-9-]", "", normalize_part(value))


@dataclass(frozen=True)
class Identity:
    uid: str
    place: str = ""

    @property
    def is_fingerprint(self) -> bool:
        return self.uid.startswith(FINGERPRINT_PREFIX)

    def owns(self, other: "Identity") -> bool:
        """Looser match used by extend, where the caller may omit place."""
        if self.uid != other.uid:
            return False
        if self.place and other.place:
            return self.place == other.place
        return True

    def to_dict(self) -> Dict[str, str]:
        return {"uid": self.uid, "place": self.place}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["Identity"]:
        if not data:
            return None
        return cls(uid=normalize_part(data.get("uid")), place=normalize_part(data.get("place")))

    def __str__(self) -> str:
        return f"{self.uid}:{self.place}" if self.place else self.uid


def explicit_identity(uid, place, require_place=True) -> Identity:
    """Build an identity from request parameters, rejecting blanks."""
    uid = normalize_part(uid)
    place = normalize_part(place)
    if not uid or (require_place and not place):
        raise MissingParameter(reason="missing_uid_or_place")
    return Identity(uid=uid, place=place)


def _digest(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32].upper()


def fingerprint_identity(ip, user_agent, device_id=None, max_device_length=128) -> Identity:
    """Hash a device id (capped) or ``ip|user_agent`` into an opaque identity."""
    device_id = str(device_id or "").strip()
    if device_id:
        raw = "device|" + device_id[:max_device_length]
    else:
        raw = f"{str(ip or '').strip()}|{str(user_agent or '').strip()}"
    return Identity(uid=FINGERPRINT_PREFIX + _digest(raw), place="")


def client_ip(headers: Mapping[str, str], remote_addr: Optional[str]) -> str:
    forwarded = headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return remote_addr or ""
