"""
Record stores

Every store keeps the records in memory and mirrors them somewhere on
``save()``. The registry mutates through ``put``/``delete`` and then calls
``save()`` once per operation.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from collections import deque
from typing import Any, Dict, Iterable, Optional

from .errors import StorageFailure
from .models import KeyRecord

logger = logging.getLogger(__name__)


class MemoryStore:
    """Process-local store, nothing survives a restart."""

    def __init__(self):
        self._records: Dict[str, Any] = {}
        self.audit = deque(maxlen=1000)

    def load(self) -> None:
        pass

    def save(self) -> None:
        pass

    def get(self, key: str):
        return self._records.get(key)

    def put(self, record) -> None:
        self._records[record.key] = record

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def records(self) -> Iterable:
        return list(self._records.values())

    def log_event(self, action: str, key: Optional[str], details: Dict[str, Any]) -> None:
        self.audit.append((action, key, details))

    def close(self) -> None:
        pass


class JsonFileStore(MemoryStore):
    """Flat JSON file, replaced atomically (write temp, then rename)."""

    def __init__(self, path):
        super().__init__()
        self.path = str(path)
        self._write_lock = threading.Lock()
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.path):
            self._records = {}
            return
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except OSError as e:
            raise StorageFailure(f"cannot read {self.path}: {e}") from e
        except ValueError as e:
            # a torn or hand-edited file should not keep the server down
            logger.error("Ignoring unreadable key store %s: %s", self.path, e)
            data = {}
        keys = data.get("keys") if isinstance(data, dict) else None
        self._records = {}
        for key, row in (keys or {}).items():
            self._records[key] = KeyRecord.from_dict(dict(row, key=key))

    def save(self) -> None:
        payload = {
            "updated_at": int(time.time()),
            "keys": {r.key: {k: v for k, v in r.to_dict().items() if k != "key"} for r in self.records()},
        }
        tmp = self.path + ".tmp"
        with self._write_lock:
            try:
                dir_path = os.path.dirname(self.path) or "."
                os.makedirs(dir_path, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, ensure_ascii=False, indent=2)
                    fh.write("\n")
                os.replace(tmp, self.path)
            except OSError as e:
                raise StorageFailure(f"cannot write {self.path}: {e}") from e


class SQLiteStore(MemoryStore):
    """SQLite backed store with an audit_log table."""

    def __init__(self, path="keys.db"):
        super().__init__()
        self.path = str(path)
        self._dirty = set()
        self._deleted = set()
        self._db_lock = threading.Lock()
        try:
            dir_path = os.path.dirname(self.path) or "."
            os.makedirs(dir_path, exist_ok=True)
            self.db = sqlite3.connect(self.path, check_same_thread=False)
            self._init()
        except (OSError, sqlite3.Error) as e:
            raise StorageFailure(f"cannot open {self.path}: {e}") from e
        self.load()

    def _init(self) -> None:
        c = self.db.cursor()

        # Key table
        c.execute('''CREATE TABLE IF NOT EXISTS keys
                     (key TEXT PRIMARY KEY,
                      uid TEXT,
                      place TEXT,
                      issued_at INTEGER,
                      expires_at INTEGER,
                      reusable INTEGER DEFAULT 0,
                      uses_count INTEGER DEFAULT 0,
                      max_uses INTEGER DEFAULT 0,
                      condemned INTEGER DEFAULT 0)''')

        # Audit log
        c.execute('''CREATE TABLE IF NOT EXISTS audit_log
                     (id INTEGER PRIMARY KEY AUTOINCREMENT,
                      key TEXT,
                      action TEXT,
                      details TEXT,
                      timestamp INTEGER)''')

        self.db.commit()

    def load(self) -> None:
        columns = ['key', 'uid', 'place', 'issued_at', 'expires_at',
                   'reusable', 'uses_count', 'max_uses', 'condemned']
        try:
            with self._db_lock:
                rows = self.db.execute('SELECT %s FROM keys' % ", ".join(columns)).fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"cannot read {self.path}: {e}") from e
        self._records = {}
        for row in rows:
            data = dict(zip(columns, row))
            identity = {"uid": data.pop("uid"), "place": data.pop("place")} if data["uid"] else None
            data["identity"] = identity
            self._records[data["key"]] = KeyRecord.from_dict(data)
        self._dirty.clear()
        self._deleted.clear()

    def put(self, record) -> None:
        super().put(record)
        self._dirty.add(record.key)
        self._deleted.discard(record.key)

    def delete(self, key: str) -> None:
        super().delete(key)
        self._deleted.add(key)
        self._dirty.discard(key)

    def save(self) -> None:
        rows = []
        for key in self._dirty:
            record = self._records.get(key)
            if record is None:
                continue
            ident = record.identity
            rows.append((record.key, ident.uid if ident else None, ident.place if ident else None,
                         record.issued_at, record.expires_at, int(record.reusable),
                         record.uses_count, record.max_uses, int(record.condemned)))
        try:
            with self._db_lock, self.db:
                self.db.executemany(
                    "INSERT INTO keys(key,uid,place,issued_at,expires_at,reusable,uses_count,max_uses,condemned) "
                    "VALUES(?,?,?,?,?,?,?,?,?) ON CONFLICT(key) DO UPDATE SET uid=excluded.uid, "
                    "place=excluded.place, issued_at=excluded.issued_at, expires_at=excluded.expires_at, "
                    "reusable=excluded.reusable, uses_count=excluded.uses_count, "
                    "max_uses=excluded.max_uses, condemned=excluded.condemned",
                    rows,
                )
                self.db.executemany('DELETE FROM keys WHERE key = ?', [(k,) for k in self._deleted])
        except (sqlite3.Error, OverflowError) as e:
            raise StorageFailure(f"cannot write {self.path}: {e}") from e
        self._dirty.clear()
        self._deleted.clear()

    def log_event(self, action: str, key: Optional[str], details: Dict[str, Any]) -> None:
        try:
            with self._db_lock, self.db:
                self.db.execute('''INSERT INTO audit_log
                                   (key, action, details, timestamp)
                                   VALUES (?, ?, ?, ?)''',
                                (key, action, json.dumps(details), int(time.time())))
        except (sqlite3.Error, OverflowError) as e:
            raise StorageFailure(f"cannot write audit log: {e}") from e

    def close(self) -> None:
        self.db.close()


def open_store(kind: str, path: Optional[str] = None):
    """Resolve a store by name: memory, json or sqlite."""
    kind = (kind or "memory").lower()
    if kind == "memory":
        return MemoryStore()
    if kind == "json":
        return JsonFileStore(path or "keys.json")
    if kind == "sqlite":
        return SQLiteStore(path or "keys.db")
    raise ValueError(f"Unknown store: {kind}")
