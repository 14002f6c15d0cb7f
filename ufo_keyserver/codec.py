"""
Key codecs

Two ways of turning an issued key into a string:

* ``OpaqueKeyCodec`` - random human readable keys (``UFO-AB12CD34-48H``).
  The registry is the source of truth.
* ``SignedKeyCodec`` - self-certifying tokens carrying identity and expiry,
  signed with HMAC-SHA256. Nothing needs to be stored, nothing can be
  revoked early.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import itertools
import json
import re
import secrets
import string
from typing import Callable, Optional, Tuple

from .errors import BadSignature, BadToken
from .identity import Identity, normalize_key, normalize_part

KEY_ALPHABET = string.ascii_uppercase + string.digits
MAX_GENERATE_ATTEMPTS = 5


def ttl_label(ttl: int) -> str:
    if ttl >= 3600:
        return f"{ttl // 3600}H"
    return f"{max(ttl // 60, 1)}M"


class OpaqueKeyCodec:
    def __init__(self, prefix="UFO", length=8):
        self.prefix = normalize_part(prefix)
        self.length = int(length)
        self._counter = itertools.count(1)
        self._pattern = re.compile(
            r"^%s-[A-Z0-9]{%d}-\d+[HM](-\d+)?$" % (re.escape(self.prefix), self.length)
        )

    def _candidate(self, ttl: int) -> str:
        body = "".join(secrets.choice(KEY_ALPHABET) for _ in range(self.length))
        return f"{self.prefix}-{body}-{ttl_label(ttl)}"

    def generate(self, ttl: int, exists: Callable[[str], bool] = lambda key: False) -> str:
        """Generate a key not yet known to ``exists``.

        After ``MAX_GENERATE_ATTEMPTS`` collisions the last candidate gets a
        monotonic counter suffix until it is unique.
        """
        candidate = self._candidate(ttl)
        for _ in range(MAX_GENERATE_ATTEMPTS - 1):
            if not exists(candidate):
                return candidate
            candidate = self._candidate(ttl)
        if not exists(candidate):
            return candidate
        while True:
            suffixed = f"{candidate}-{next(self._counter)}"
            if not exists(suffixed):
                return suffixed

    @staticmethod
    def normalize(raw) -> str:
        return normalize_key(raw)

    def parse(self, raw) -> Optional[str]:
        key = self.normalize(raw)
        return key if self._pattern.match(key) else None


def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def _b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


class SignedKeyCodec:
    def __init__(self, secret, prefix="UFO"):
        if not secret:
            raise ValueError("SignedKeyCodec needs a non-empty secret")
        self.secret = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        self.prefix = normalize_part(prefix)

    def _sign(self, signing_input: str) -> str:
        return hmac.new(self.secret, signing_input.encode("utf-8"), hashlib.sha256).hexdigest()

    def encode(self, identity: Identity, expires_at: int) -> str:
        payload = json.dumps(
            {"u": identity.uid, "p": identity.place, "e": int(expires_at)},
            separators=(",", ":"),
            sort_keys=True,
        ).encode("utf-8")
        signing_input = f"{self.prefix}.{_b64url_encode(payload)}"
        return f"{signing_input}.{self._sign(signing_input)}"

    @staticmethod
    def normalize(raw) -> str:
        return str(raw if raw is not None else "").strip()

    def decode(self, token) -> Tuple[Identity, int]:
        """Return ``(identity, expires_at)`` or raise BadToken/BadSignature."""
        parts = self.normalize(token).split(".")
        if len(parts) != 3 or parts[0] != self.prefix or not parts[1] or not parts[2]:
            raise BadToken("malformed token")
        signing_input = f"{parts[0]}.{parts[1]}"
        if not hmac.compare_digest(self._sign(signing_input), parts[2]):
            raise BadSignature("signature mismatch")
        try:
            payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
            identity = Identity(uid=str(payload["u"]), place=str(payload["p"]))
            expires_at = int(payload["e"])
        except (ValueError, KeyError, TypeError) as e:
            raise BadToken(f"bad payload: {e}") from e
        return identity, expires_at
