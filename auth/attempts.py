"""
auth/attempts.py -- Storage backends for failed-login counters.

The LoginAttemptGovernor owns the lockout policy; an AttemptStore owns the
counters. Splitting them lets a multi-instance deployment swap the in-process
table for a shared database without touching the policy.

Contract every store honours:
  get(address)                  -> AttemptRecord | None (a snapshot, not a live reference)
  increment(address, now, window) -> AttemptRecord after the update. Atomic per
                                   address: a count whose last_attempt is at least
                                   `window` seconds old restarts from zero first.
  reserve(address, now, window, limit)
                                -> (admitted, AttemptRecord). Atomic per address:
                                   counts one attempt unless `limit` live attempts
                                   are already recorded, in which case nothing
                                   changes and admitted is False.
  reset(address)                -> remove the record (successful login)
  sweep(cutoff)                 -> remove records with last_attempt <= cutoff,
                                   return the number removed

Concurrency:
  InMemoryAttemptStore stripes locks by address hash. Two requests from the
  same address serialize on one stripe; unrelated addresses almost never
  contend, and there is no table-wide lock on the hot path.

  SqlAttemptStore does the read-modify-write as one UPDATE statement inside a
  transaction, so the database provides the atomicity.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import threading
from typing import Protocol

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, case, create_engine, event, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import AttemptRecord


class AttemptStore(Protocol):
    def get(self, address: str) -> AttemptRecord | None: ...

    def increment(self, address: str, now: float, window: float) -> AttemptRecord: ...

    def reserve(self, address: str, now: float, window: float, limit: int) -> tuple[bool, AttemptRecord]: ...

    def reset(self, address: str) -> None: ...

    def sweep(self, cutoff: float) -> int: ...


# ---------------------------------------------------------------------------
# In-process store
# ---------------------------------------------------------------------------


class InMemoryAttemptStore:
    """Attempt table held in a dict, safe for concurrent threadpool handlers.

    Usage:
        store = InMemoryAttemptStore()
        store.increment("203.0.113.7", now=time.time(), window=900)
        store.get("203.0.113.7")   # AttemptRecord(count=1, last_attempt=...)
    """

    def __init__(self, stripes: int = 64) -> None:
        self._records: dict[str, AttemptRecord] = {}
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, address: str) -> threading.Lock:
        return self._locks[hash(address) % len(self._locks)]

    def get(self, address: str) -> AttemptRecord | None:
        with self._lock_for(address):
            record = self._records.get(address)
            if record is None:
                return None
            return AttemptRecord(count=record.count, last_attempt=record.last_attempt)

    def increment(self, address: str, now: float, window: float) -> AttemptRecord:
        with self._lock_for(address):
            record = self._records.get(address)
            if record is None or now - record.last_attempt >= window:
                record = AttemptRecord(count=0, last_attempt=now)
                self._records[address] = record
            record.count += 1
            record.last_attempt = now
            return AttemptRecord(count=record.count, last_attempt=record.last_attempt)

    def reserve(self, address: str, now: float, window: float, limit: int) -> tuple[bool, AttemptRecord]:
        with self._lock_for(address):
            record = self._records.get(address)
            if record is None or now - record.last_attempt >= window:
                record = AttemptRecord(count=0, last_attempt=now)
                self._records[address] = record
            if record.count >= limit:
                return False, AttemptRecord(count=record.count, last_attempt=record.last_attempt)
            record.count += 1
            record.last_attempt = now
            return True, AttemptRecord(count=record.count, last_attempt=record.last_attempt)

    def reset(self, address: str) -> None:
        with self._lock_for(address):
            self._records.pop(address, None)

    def sweep(self, cutoff: float) -> int:
        """Drop stale records, one stripe at a time.

        list() snapshots the keys so the dict can shrink while we iterate.
        Each candidate is re-checked under its own stripe lock because a
        concurrent failure may have refreshed it since the snapshot.
        """
        removed = 0
        for address in list(self._records):
            with self._lock_for(address):
                record = self._records.get(address)
                if record is not None and record.last_attempt <= cutoff:
                    del self._records[address]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Shared SQL store
# ---------------------------------------------------------------------------

_metadata = MetaData()

_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("address", String(64), primary_key=True),  # IPv6 max is 45 chars
    Column("failures", Integer, nullable=False),
    Column("last_attempt", Float, nullable=False, index=True),  # Unix seconds
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block the increment writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class SqlAttemptStore:
    """Attempt table in a SQL database shared by every app instance.

    Usage:
        store = SqlAttemptStore("postgresql+psycopg://...")
        store.increment("203.0.113.7", now=time.time(), window=900)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def get(self, address: str) -> AttemptRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_login_attempts.select().where(_login_attempts.c.address == address)).fetchone()
        return _row_to_record(row) if row is not None else None

    def increment(self, address: str, now: float, window: float) -> AttemptRecord:
        """Bump the counter in a single statement.

        The CASE expression restarts a stale counter at 1 in the same UPDATE
        that bumps a live one, so two instances racing on one address both
        land. If no row exists yet the INSERT may lose a race to another
        instance's INSERT; the IntegrityError retry then takes the UPDATE path.
        """
        stale = _login_attempts.c.last_attempt <= now - window
        update = (
            _login_attempts.update()
            .where(_login_attempts.c.address == address)
            .values(
                failures=case((stale, 1), else_=_login_attempts.c.failures + 1),
                last_attempt=now,
            )
        )
        for _ in range(2):
            try:
                with self.engine.begin() as conn:
                    if conn.execute(update).rowcount == 0:
                        conn.execute(_login_attempts.insert().values(address=address, failures=1, last_attempt=now))
                    row = conn.execute(
                        _login_attempts.select().where(_login_attempts.c.address == address)
                    ).fetchone()
                return _row_to_record(row)
            except IntegrityError:
                continue
        raise RuntimeError(f"could not record login attempt for {address!r}")

    def reserve(self, address: str, now: float, window: float, limit: int) -> tuple[bool, AttemptRecord]:
        """Count one attempt unless the address is already at `limit`.

        The WHERE clause carries the limit, so the check and the bump are one
        statement: of N instances racing on a live counter at limit - 1, the
        database lets exactly one UPDATE match. A missing row is created with
        the same insert-then-retry pattern as increment().
        """
        stale = _login_attempts.c.last_attempt <= now - window
        admit = (
            _login_attempts.update()
            .where(_login_attempts.c.address == address)
            .where(or_(stale, _login_attempts.c.failures < limit))
            .values(
                failures=case((stale, 1), else_=_login_attempts.c.failures + 1),
                last_attempt=now,
            )
        )
        for _ in range(2):
            try:
                with self.engine.begin() as conn:
                    admitted = conn.execute(admit).rowcount == 1
                    row = conn.execute(
                        _login_attempts.select().where(_login_attempts.c.address == address)
                    ).fetchone()
                    if row is None:
                        conn.execute(_login_attempts.insert().values(address=address, failures=1, last_attempt=now))
                        admitted = True
                        row = conn.execute(
                            _login_attempts.select().where(_login_attempts.c.address == address)
                        ).fetchone()
                return admitted, _row_to_record(row)
            except IntegrityError:
                continue
        raise RuntimeError(f"could not reserve login attempt for {address!r}")

    def reset(self, address: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_login_attempts.delete().where(_login_attempts.c.address == address))

    def sweep(self, cutoff: float) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_login_attempts.delete().where(_login_attempts.c.last_attempt <= cutoff))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _row_to_record(row) -> AttemptRecord:
    return AttemptRecord(count=row.failures, last_attempt=row.last_attempt)
