"""
Record store for orders, agents and identities.

Every collection is persisted as a whole and every save fully replaces it.
A read-modify-write cycle must run inside ``store.locked(name)``:

    with store.locked(ORDERS):
        orders = store.load_orders()
        ...
        store.save_orders(orders)

The lock is per collection, so orders and agents never block each other.
"""
from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog
from filelock import FileLock, Timeout

from .config import DbConfig, StorageConfig
from .domain import Agent, Identity, Order

logger = structlog.get_logger(__name__)

ORDERS = "orders"
AGENTS = "agents"
IDENTITIES = "identities"
COLLECTIONS = (ORDERS, AGENTS, IDENTITIES)


class StoreError(Exception):
    pass


class RecordStore:
    """Typed load/save on top of a backend that reads and writes lists of dicts."""

    @contextmanager
    def locked(self, name: str) -> Iterator[None]:
        raise NotImplementedError

    def _read(self, name: str) -> list[dict]:
        raise NotImplementedError

    def _write(self, name: str, rows: list[dict]) -> None:
        raise NotImplementedError

    def _decode(self, name: str, factory) -> list:
        try:
            return [factory(r) for r in self._read(name)]
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Malformed record in {name}: {e!r}") from e

    def load_orders(self) -> list[Order]:
        return self._decode(ORDERS, Order.from_dict)

    def save_orders(self, orders: list[Order]) -> None:
        self._write(ORDERS, [o.to_dict() for o in orders])

    def load_agents(self) -> list[Agent]:
        return self._decode(AGENTS, Agent.from_dict)

    def save_agents(self, agents: list[Agent]) -> None:
        self._write(AGENTS, [a.to_dict() for a in agents if a.role == "agent"])

    def load_identities(self) -> list[Identity]:
        return self._decode(IDENTITIES, Identity.from_dict)

    def save_identities(self, identities: list[Identity]) -> None:
        self._write(IDENTITIES, [i.to_dict() for i in identities])


class JsonRecordStore(RecordStore):
    """
    One JSON file per collection under ``data_dir``.

    Exclusion is a thread lock plus a file lock next to the collection file,
    so several server processes sharing ``data_dir`` are serialized too.
    Writes go to a temp file in the same directory and are renamed over the target.
    """

    def __init__(self, data_dir: str | Path, lock_timeout: float = 30.0) -> None:
        self.data_dir = Path(data_dir)
        self.lock_timeout = lock_timeout
        self._thread_locks = {name: threading.RLock() for name in COLLECTIONS}
        self._file_locks = {
            name: FileLock(self.path_for(name).with_suffix(".lock"), timeout=lock_timeout)
            for name in COLLECTIONS
        }
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        if name not in COLLECTIONS:
            raise StoreError(f"Unknown collection: {name}")
        return self.data_dir / f"{name}.json"

    @contextmanager
    def locked(self, name: str) -> Iterator[None]:
        self.path_for(name)
        thread_lock = self._thread_locks[name]
        if not thread_lock.acquire(timeout=self.lock_timeout):
            raise StoreError(f"Timeout acquiring lock for {name}")
        try:
            file_lock = self._file_locks[name]
            try:
                file_lock.acquire()
            except Timeout as e:
                logger.error("store.lock_timeout", collection=name)
                raise StoreError(f"Timeout acquiring file lock for {name}") from e
            try:
                yield
            finally:
                file_lock.release()
        finally:
            thread_lock.release()

    def _read(self, name: str) -> list[dict]:
        path = self.path_for(name)
        if not path.exists():
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Cannot read {path}: {e}") from e
        if not text.strip():
            return []
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StoreError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(data, list):
            raise StoreError(f"{path} must contain a JSON list")
        return data

    def _write(self, name: str, rows: list[dict]) -> None:
        path = self.path_for(name)
        with self.locked(name):
            fd, temp_path = tempfile.mkstemp(prefix=f".{name}-", suffix=".tmp", dir=self.data_dir)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(rows, f, indent=2, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, path)
            except Exception as e:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                logger.error("store.write_failed", collection=name, path=str(path), exc_info=True)
                raise StoreError(f"Cannot write {path}: {e}") from e


def open_store(cfg: StorageConfig, db_cfg: DbConfig | None = None) -> RecordStore:
    if cfg.backend == "postgres":
        from .db import Db, PostgresRecordStore

        if db_cfg is None:
            raise StoreError("Storage backend 'postgres' requires a [db] section")
        store = PostgresRecordStore(Db(db_cfg), lock_timeout=cfg.lock_timeout)
        store.ensure_schema()
        return store
    return JsonRecordStore(cfg.data_dir, lock_timeout=cfg.lock_timeout)
