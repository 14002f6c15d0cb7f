"""
Key registry

Decides when to mint a key and when to hand back the one already issued,
adjudicates verification, and tops up expiry. ``KeyRegistry`` keeps state
in a record store; ``SignedKeyRegistry`` keeps none and trusts HMAC-signed
tokens instead.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Iterable, Optional, Tuple

from .codec import OpaqueKeyCodec, SignedKeyCodec
from .errors import (AlreadyExpired, BadSignature, BadToken, ExtendLimitReached,
                     MissingParameter, NotFound, NotOwner)
from .identity import Identity, normalize_key
from .models import ExtendResult, KeyRecord, VerifyResult
from .stores import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 48 * 3600
DEFAULT_EXTEND_SECONDS = 5 * 3600
DEFAULT_MAX_TTL_SECONDS = 30 * 24 * 3600
DEFAULT_SWEEP_RETENTION_SECONDS = 24 * 3600
DAY_SECONDS = 24 * 3600

STRICT = "strict"
LENIENT = "lenient"


class AllowList:
    """Operator bypass keys, normalized the same way as issued keys."""

    def __init__(self, keys: Iterable[str] = ()):
        self._keys = frozenset(k for k in (normalize_key(k) for k in keys) if k)

    def __contains__(self, key) -> bool:
        return normalize_key(key) in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class _BaseRegistry:
    def __init__(self, allow_list=(), default_ttl=DEFAULT_TTL_SECONDS,
                 extend_step=DEFAULT_EXTEND_SECONDS, max_extend=DEFAULT_EXTEND_SECONDS,
                 max_extends_per_day=0, max_ttl=DEFAULT_MAX_TTL_SECONDS, clock=time.time):
        self.allow_list = allow_list if isinstance(allow_list, AllowList) else AllowList(allow_list)
        self.default_ttl = int(default_ttl) if int(default_ttl) > 0 else DEFAULT_TTL_SECONDS
        self.extend_step = int(extend_step)
        self.max_extend = int(max_extend)
        self.max_extends_per_day = int(max_extends_per_day)
        self.max_ttl = int(max_ttl)
        self.clock = clock
        self._lock = threading.RLock()
        self._extensions: Dict[Tuple[str, int], int] = {}

    def _now(self) -> int:
        return int(self.clock())

    def _ttl(self, ttl) -> int:
        try:
            ttl = int(ttl) if ttl is not None else 0
        except (TypeError, ValueError, OverflowError):
            ttl = 0
        if ttl <= 0:
            ttl = self.default_ttl
        if self.max_ttl > 0:
            ttl = min(ttl, self.max_ttl)
        return ttl

    def _delta(self, delta) -> int:
        try:
            delta = int(delta) if delta is not None else 0
        except (TypeError, ValueError, OverflowError):
            delta = 0
        if delta <= 0:
            delta = self.extend_step
        if self.max_extend > 0:
            delta = min(delta, self.max_extend)
        return delta

    def _allow_listed(self, key, now) -> Optional[VerifyResult]:
        if key in self.allow_list:
            return VerifyResult(valid=True, expires_at=now + self.default_ttl)
        return None

    def _count_extension(self, identity: Identity, now: int) -> None:
        if self.max_extends_per_day <= 0:
            return
        day = now // DAY_SECONDS
        for stale in [k for k in self._extensions if k[1] != day]:
            del self._extensions[stale]
        slot = (identity.uid, day)
        if self._extensions.get(slot, 0) >= self.max_extends_per_day:
            raise ExtendLimitReached(f"{identity.uid} used {self.max_extends_per_day} extensions today")
        self._extensions[slot] = self._extensions.get(slot, 0) + 1


class KeyRegistry(_BaseRegistry):
    """Stateful registry: opaque keys, records kept in a store."""

    def __init__(self, store=None, codec=None, expiry_policy=STRICT, max_uses=0,
                 sweep_retention=DEFAULT_SWEEP_RETENTION_SECONDS, **kwargs):
        super().__init__(**kwargs)
        if expiry_policy not in (STRICT, LENIENT):
            raise ValueError(f"Unknown expiry policy: {expiry_policy}")
        self.store = store if store is not None else MemoryStore()
        self.codec = codec or OpaqueKeyCodec()
        self.expiry_policy = expiry_policy
        self.max_uses = int(max_uses)
        self.sweep_retention = int(sweep_retention)
        self._by_identity: Dict[Identity, str] = {}
        self._rebuild_index()

    def _rebuild_index(self) -> None:
        best: Dict[Identity, KeyRecord] = {}
        for record in self.store.records():
            if record.identity is None or record.reusable:
                continue
            current = best.get(record.identity)
            if current is None or record.expires_at > current.expires_at:
                best[record.identity] = record
        self._by_identity = {ident: rec.key for ident, rec in best.items()}

    def _exists(self, key: str) -> bool:
        return self.store.get(key) is not None

    def _bind(self, record: KeyRecord, identity: Identity) -> None:
        old = record.identity
        if old is not None and self._by_identity.get(old) == record.key:
            del self._by_identity[old]
        record.identity = identity
        if not record.reusable:
            self._by_identity[identity] = record.key

    def _commit(self, record: KeyRecord) -> None:
        self.store.put(record)
        self.store.save()

    def active_for(self, identity: Identity) -> Optional[KeyRecord]:
        with self._lock:
            key = self._by_identity.get(identity)
            record = self.store.get(key) if key else None
            if record is None or record.identity != identity or record.is_expired(self._now()):
                return None
            return record

    def issue(self, identity: Identity, ttl=None, reusable=False) -> Tuple[KeyRecord, bool]:
        """Return ``(record, reused)`` - the live key for ``identity`` or a new one."""
        if identity is None:
            raise MissingParameter(reason="missing_uid_or_place")
        ttl = self._ttl(ttl)
        with self._lock:
            existing = self.active_for(identity)
            if existing is not None:
                return existing, True
            now = self._now()
            key = self.codec.generate(ttl, exists=self._exists)
            record = KeyRecord(key=key, identity=identity, issued_at=now, expires_at=now + ttl,
                               reusable=reusable, max_uses=self.max_uses)
            if not reusable:
                self._by_identity[identity] = key
            self._commit(record)
            logger.info("Issued %s to %s (ttl=%ss)", key, identity, ttl)
            return record, False

    def seed_reusable(self, keys: Iterable[str], ttl=None) -> int:
        """Register operator keys that always verify and refresh themselves."""
        ttl = self._ttl(ttl)
        added = 0
        with self._lock:
            now = self._now()
            for raw in keys:
                key = self.codec.normalize(raw)
                if not key or self._exists(key):
                    continue
                self.store.put(KeyRecord(key=key, identity=None, issued_at=now,
                                         expires_at=now + ttl, reusable=True))
                added += 1
            if added:
                self.store.save()
        return added

    def verify(self, key, identity: Optional[Identity]) -> VerifyResult:
        if not key or not str(key).strip() or identity is None:
            return VerifyResult(valid=False, reason="missing_params")
        now = self._now()
        allowed = self._allow_listed(key, now)
        if allowed is not None:
            return allowed

        with self._lock:
            now = self._now()
            record = self.store.get(self.codec.normalize(key))
            if record is None:
                return VerifyResult(valid=False, reason="not_found")

            if record.reusable:
                record.expires_at = now + self.default_ttl
                if record.identity is None:
                    self._bind(record, identity)
                record.uses_count += 1
                self._commit(record)
                return VerifyResult(valid=True, expires_at=record.expires_at)

            if record.is_expired(now):
                if self.expiry_policy == LENIENT:
                    self._bind(record, identity)
                    record.expires_at = now + self.default_ttl
                    record.condemned = False
                    self._commit(record)
                    logger.warning("Re-issued expired key %s to %s", record.key, identity)
                    return VerifyResult(valid=True, expires_at=record.expires_at,
                                        reason="reissued_after_expire")
                if not record.condemned:
                    record.condemned = True
                    self._commit(record)
                return VerifyResult(valid=False, expires_at=record.expires_at, reason="expired")

            if record.identity is not None and record.identity != identity:
                return VerifyResult(valid=False, reason="identity_mismatch")

            if record.max_uses > 0 and record.uses_count >= record.max_uses:
                return VerifyResult(valid=False, expires_at=record.expires_at, reason="exhausted")

            if record.identity is None:
                self._bind(record, identity)
            record.uses_count += 1
            self._commit(record)
            return VerifyResult(valid=True, expires_at=record.expires_at)

    def extend(self, key, identity: Optional[Identity], delta=None) -> ExtendResult:
        if not key or not str(key).strip() or identity is None:
            raise MissingParameter()
        delta = self._delta(delta)
        with self._lock:
            now = self._now()
            record = self.store.get(self.codec.normalize(key))
            if record is None:
                raise NotFound(f"unknown key {key}")
            if record.identity is not None and not record.identity.owns(identity):
                raise NotOwner(f"{record.key} is bound to another uid")
            if record.is_expired(now):
                raise AlreadyExpired(f"{record.key} expired at {record.expires_at}")
            self._count_extension(identity, now)
            record.expires_at = max(record.expires_at, now) + delta
            self._commit(record)
            logger.info("Extended %s by %ss", record.key, delta)
            return ExtendResult(key=record.key, expires_at=record.expires_at)

    def sweep(self) -> int:
        """Drop dead records. Returns how many were removed."""
        with self._lock:
            now = self._now()
            removed = 0
            for record in self.store.records():
                if record.reusable or not record.is_expired(now):
                    continue
                stale = now - record.expires_at > self.sweep_retention
                if record.identity is None or record.condemned or stale:
                    self.store.delete(record.key)
                    if record.identity is not None and self._by_identity.get(record.identity) == record.key:
                        del self._by_identity[record.identity]
                    removed += 1
            if removed:
                self.store.save()
                logger.info("Swept %d expired key(s)", removed)
            return removed

    def stats(self) -> Dict[str, int]:
        with self._lock:
            now = self._now()
            records = list(self.store.records())
            live = [r for r in records if not r.is_expired(now)]
            return {
                "total": len(records),
                "bound": sum(1 for r in records if r.identity is not None),
                "active": len(live),
                "expired": len(records) - len(live),
                "reusable": sum(1 for r in records if r.reusable),
                "expiring_soon": sum(1 for r in live if r.expires_at - now <= 3600),
                "allow_listed": len(self.allow_list),
            }


class SignedKeyRegistry(_BaseRegistry):
    """Stateless registry: keys are HMAC-signed tokens, only the allow-list is held."""

    def __init__(self, codec: SignedKeyCodec, **kwargs):
        super().__init__(**kwargs)
        self.codec = codec

    def issue(self, identity: Identity, ttl=None, reusable=False) -> Tuple[KeyRecord, bool]:
        if identity is None:
            raise MissingParameter(reason="missing_uid_or_place")
        now = self._now()
        expires_at = now + self._ttl(ttl)
        token = self.codec.encode(identity, expires_at)
        return KeyRecord(key=token, identity=identity, issued_at=now, expires_at=expires_at), False

    def verify(self, key, identity: Optional[Identity]) -> VerifyResult:
        if not key or not str(key).strip() or identity is None:
            return VerifyResult(valid=False, reason="missing_params")
        now = self._now()
        allowed = self._allow_listed(key, now)
        if allowed is not None:
            return allowed
        try:
            bound, expires_at = self.codec.decode(key)
        except BadSignature:
            return VerifyResult(valid=False, reason="bad_signature")
        except BadToken:
            return VerifyResult(valid=False, reason="not_found")
        if now > expires_at:
            return VerifyResult(valid=False, expires_at=expires_at, reason="expired")
        if bound != identity:
            return VerifyResult(valid=False, reason="identity_mismatch")
        return VerifyResult(valid=True, expires_at=expires_at)

    def extend(self, key, identity: Optional[Identity], delta=None) -> ExtendResult:
        if not key or not str(key).strip() or identity is None:
            raise MissingParameter()
        delta = self._delta(delta)
        try:
            bound, expires_at = self.codec.decode(key)
        except BadToken as e:
            raise NotFound(str(e)) from e
        if not bound.owns(identity):
            raise NotOwner("token is bound to another uid")
        with self._lock:
            now = self._now()
            if now > expires_at:
                raise AlreadyExpired(f"token expired at {expires_at}")
            self._count_extension(identity, now)
        expires_at = max(expires_at, now) + delta
        return ExtendResult(key=self.codec.encode(bound, expires_at), expires_at=expires_at)

    def sweep(self) -> int:
        return 0

    def stats(self) -> Dict[str, int]:
        return {"allow_listed": len(self.allow_list)}
