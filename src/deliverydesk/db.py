from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import psycopg
from psycopg import Connection
from psycopg.types.json import Jsonb

from .config import DbConfig
from .store import AGENTS, IDENTITIES, ORDERS, RecordStore, StoreError


class DbError(StoreError):
    pass


@dataclass(frozen=True)
class Db:
    cfg: DbConfig

    def connect(self) -> Connection:
        try:
            return psycopg.connect(
                host=self.cfg.host,
                port=self.cfg.port,
                dbname=self.cfg.name,
                user=self.cfg.user,
                password=self.cfg.password,
                sslmode=self.cfg.sslmode,
                autocommit=True,
            )
        except Exception as e:
            raise DbError(
                "Cannot connect to database. Check config.toml [db] and that PostgreSQL is running."
            ) from e

    @contextmanager
    def session(self) -> Iterator[Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        conn = self.connect()
        try:
            conn.execute("BEGIN;")
            yield conn
            conn.execute("COMMIT;")
        except Exception:
            conn.execute("ROLLBACK;")
            raise
        finally:
            conn.close()


# collection -> (table, key field)
TABLES = {
    ORDERS: ("delivery_order", "id"),
    AGENTS: ("delivery_agent", "phone"),
    IDENTITIES: ("identity", "phone"),
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
  key       text PRIMARY KEY,
  position  integer NOT NULL,
  payload   jsonb NOT NULL
);
"""


class PostgresRecordStore(RecordStore):
    """
    Same contract as the JSON store, one table per collection.

    ``locked(name)`` opens a transaction and locks the table; loads and saves
    made by the same thread inside that scope reuse the locked connection and
    commit together when the scope exits.
    """

    def __init__(self, db: Db, lock_timeout: float = 30.0) -> None:
        self.db = db
        self.lock_timeout = lock_timeout
        self._local = threading.local()

    def _active(self) -> dict[str, Connection]:
        if not hasattr(self._local, "conns"):
            self._local.conns = {}
        return self._local.conns

    def ensure_schema(self) -> None:
        with self.db.transaction() as conn:
            for table, _ in TABLES.values():
                conn.execute(SCHEMA.format(table=table))

    @contextmanager
    def locked(self, name: str) -> Iterator[None]:
        table, _ = self._table(name)
        active = self._active()
        if name in active:
            yield
            return
        try:
            with self.db.transaction() as conn:
                conn.execute(f"SET LOCAL lock_timeout = '{int(self.lock_timeout * 1000)}ms';")
                conn.execute(f"LOCK TABLE {table} IN SHARE ROW EXCLUSIVE MODE;")
                active[name] = conn
                try:
                    yield
                finally:
                    del active[name]
        except psycopg.Error as e:
            raise DbError(f"Database error on {name}: {e}") from e

    def _table(self, name: str) -> tuple[str, str]:
        if name not in TABLES:
            raise StoreError(f"Unknown collection: {name}")
        return TABLES[name]

    def _read(self, name: str) -> list[dict]:
        table, _ = self._table(name)
        sql = f"SELECT payload FROM {table} ORDER BY position;"
        conn = self._active().get(name)
        try:
            if conn is not None:
                rows = conn.execute(sql).fetchall()
            else:
                with self.db.session() as conn:
                    rows = conn.execute(sql).fetchall()
        except psycopg.Error as e:
            raise DbError(f"Cannot read {table}: {e}") from e
        return [row[0] for row in rows]

    def _write(self, name: str, rows: list[dict]) -> None:
        table, key = self._table(name)
        with self.locked(name):
            conn = self._active()[name]
            try:
                conn.execute(f"DELETE FROM {table};")
                with conn.cursor() as cur:
                    cur.executemany(
                        f"INSERT INTO {table}(key, position, payload) VALUES (%s, %s, %s);",
                        [(str(row[key]), i, Jsonb(row)) for i, row in enumerate(rows)],
                    )
            except psycopg.Error as e:
                raise DbError(f"Cannot write {table}: {e}") from e
