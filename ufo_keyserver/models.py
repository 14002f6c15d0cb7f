from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .identity import Identity


@dataclass
class KeyRecord:
    """
    One issued key and what it is bound to.

    ``identity`` stays ``None`` until the first successful verification for
    keys handed out without an owner (reusable operator keys).
    ``condemned`` is set once a strict verification has seen the record
    expired, so the sweep can drop it.
    """
    key: str
    identity: Optional[Identity]
    issued_at: int
    expires_at: int
    reusable: bool = False
    uses_count: int = 0
    max_uses: int = 0
    condemned: bool = False

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "identity": self.identity.to_dict() if self.identity else None,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "reusable": self.reusable,
            "uses_count": self.uses_count,
            "max_uses": self.max_uses,
            "condemned": self.condemned,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "KeyRecord":
        return cls(
            key=str(d["key"]),
            identity=Identity.from_dict(d.get("identity")),
            issued_at=int(d.get("issued_at") or 0),
            expires_at=int(d.get("expires_at") or 0),
            reusable=bool(d.get("reusable", False)),
            uses_count=int(d.get("uses_count") or 0),
            max_uses=int(d.get("max_uses") or 0),
            condemned=bool(d.get("condemned", False)),
        )


@dataclass
class VerifyResult:
    valid: bool
    expires_at: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class ExtendResult:
    key: str
    expires_at: int
