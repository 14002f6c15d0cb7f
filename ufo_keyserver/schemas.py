"""
Typed request models

Query parameters arrive as untyped strings; each route parses them once
here and the registry only ever sees ``Identity`` objects and ints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import MissingParameter
from .identity import Identity, client_ip, explicit_identity, fingerprint_identity


def _opt_int(value) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return None


def resolve_identity(args: Mapping[str, str], headers: Mapping[str, str], remote_addr,
                     settings, require_place=True) -> Identity:
    if settings.identity_mode == "fingerprint":
        return fingerprint_identity(
            client_ip(headers, remote_addr),
            headers.get("User-Agent", ""),
            device_id=args.get("device"),
            max_device_length=settings.device_id_max_length,
        )
    return explicit_identity(args.get("uid"), args.get("place"), require_place=require_place)


@dataclass
class IssueRequest:
    identity: Identity
    ttl: Optional[int] = None

    @classmethod
    def parse(cls, args, headers, remote_addr, settings) -> "IssueRequest":
        identity = resolve_identity(args, headers, remote_addr, settings)
        return cls(identity=identity, ttl=_opt_int(args.get("ttl")))


@dataclass
class VerifyRequest:
    key: str
    identity: Optional[Identity]
    format: str = "text"

    @property
    def wants_json(self) -> bool:
        return self.format == "json"

    @classmethod
    def parse(cls, args, headers, remote_addr, settings) -> "VerifyRequest":
        try:
            identity = resolve_identity(args, headers, remote_addr, settings)
        except MissingParameter:
            identity = None
        return cls(
            key=(args.get("key") or "").strip(),
            identity=identity,
            format=(args.get("format") or "text").strip().lower(),
        )


@dataclass
class ExtendRequest:
    key: str
    identity: Identity
    sec: Optional[int] = None

    @classmethod
    def parse(cls, args, headers, remote_addr, settings) -> "ExtendRequest":
        key = (args.get("key") or "").strip()
        try:
            identity = resolve_identity(args, headers, remote_addr, settings, require_place=False)
        except MissingParameter:
            raise MissingParameter("key and uid are required")
        if not key:
            raise MissingParameter("key and uid are required")
        return cls(key=key, identity=identity, sec=_opt_int(args.get("sec")))
