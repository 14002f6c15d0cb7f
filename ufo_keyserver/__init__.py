"""
UFO HUB X Key Server
====================
Issues, verifies and extends short-lived access keys bound to a requester
identity (Roblox uid + place, or a fingerprint).
"""

from .identity import Identity
from .models import ExtendResult, KeyRecord, VerifyResult
from .registry import AllowList, KeyRegistry, SignedKeyRegistry

__all__ = [
    "AllowList",
    "ExtendResult",
    "Identity",
    "KeyRecord",
    "KeyRegistry",
    "SignedKeyRegistry",
    "VerifyResult",
]
