"""
Configuration

Everything comes from the environment; a ``.env`` file next to the process
is loaded first when present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from dotenv import load_dotenv

DEFAULT_ALLOW_KEYS = "JJJMAX,GMPANUPHONGARTPHAIRIN"


def _csv(value: Optional[str]) -> FrozenSet[str]:
    return frozenset(p.strip() for p in (value or "").split(",") if p.strip())


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _choice(env: Mapping[str, str], name: str, default: str, choices) -> str:
    value = (env.get(name) or default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    log_level: str = "INFO"

    default_ttl: int = 48 * 3600
    extend_step: int = 5 * 3600
    max_extend: int = 5 * 3600
    max_ttl: int = 30 * 24 * 3600
    max_extends_per_day: int = 0
    max_uses: int = 0

    allow_keys: FrozenSet[str] = field(default_factory=lambda: _csv(DEFAULT_ALLOW_KEYS))
    reusable_keys: FrozenSet[str] = frozenset()

    key_mode: str = "opaque"          # opaque | signed
    key_secret: str = ""
    key_prefix: str = "UFO"
    key_length: int = 8

    store: str = "memory"             # memory | json | sqlite
    store_path: Optional[str] = None
    expiry_policy: str = "strict"     # strict | lenient
    identity_mode: str = "explicit"   # explicit | fingerprint
    device_id_max_length: int = 128

    sweep_interval: int = 600
    sweep_retention: int = 24 * 3600

    admin_token: str = ""
    audit_webhook_url: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> "Settings":
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        settings = cls(
            host=env.get("HOST", "0.0.0.0"),
            port=_int(env, "PORT", 3000),
            debug=str(env.get("DEBUG", "0")).strip().lower() in ("1", "true", "yes", "on"),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            default_ttl=_int(env, "DEFAULT_TTL_SECONDS", 48 * 3600),
            extend_step=_int(env, "EXTEND_STEP_SECONDS", 5 * 3600),
            max_extend=_int(env, "MAX_EXTEND_SECONDS", 5 * 3600),
            max_ttl=_int(env, "MAX_TTL_SECONDS", 30 * 24 * 3600),
            max_extends_per_day=_int(env, "MAX_EXTENDS_PER_DAY", 0),
            max_uses=_int(env, "MAX_USES", 0),
            allow_keys=_csv(env.get("ALLOW_KEYS", DEFAULT_ALLOW_KEYS)),
            reusable_keys=_csv(env.get("REUSABLE_KEYS")),
            key_mode=_choice(env, "KEY_MODE", "opaque", ("opaque", "signed")),
            key_secret=env.get("KEY_SECRET", ""),
            key_prefix=env.get("KEY_PREFIX") or "UFO",
            key_length=_int(env, "KEY_LENGTH", 8),
            store=_choice(env, "STORE", "memory", ("memory", "json", "sqlite")),
            store_path=env.get("STORE_PATH") or None,
            expiry_policy=_choice(env, "EXPIRY_POLICY", "strict", ("strict", "lenient")),
            identity_mode=_choice(env, "IDENTITY_MODE", "explicit", ("explicit", "fingerprint")),
            device_id_max_length=_int(env, "DEVICE_ID_MAX_LENGTH", 128),
            sweep_interval=_int(env, "SWEEP_INTERVAL_SECONDS", 600),
            sweep_retention=_int(env, "SWEEP_RETENTION_SECONDS", 24 * 3600),
            admin_token=(env.get("ADMIN_TOKEN") or "").strip(),
            audit_webhook_url=(env.get("AUDIT_WEBHOOK_URL") or "").strip(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.key_mode == "signed" and not self.key_secret:
            raise ValueError("KEY_SECRET is required when KEY_MODE=signed")
        if self.key_mode == "signed" and self.reusable_keys:
            raise ValueError("REUSABLE_KEYS needs a stored registry, not KEY_MODE=signed")
        if self.default_ttl <= 0:
            raise ValueError("DEFAULT_TTL_SECONDS must be positive")
        if self.key_length < 4:
            raise ValueError("KEY_LENGTH must be at least 4")
