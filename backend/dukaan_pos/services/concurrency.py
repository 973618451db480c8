# Overview: Concurrency primitives shared by the services: per-key locks,
# SQLite write transactions and retry on transient DB contention.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Hashable, Iterable

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the write transaction up front on SQLite.

    A deferred transaction that reads first and writes later can deadlock
    against another writer; BEGIN IMMEDIATE takes the reserved lock first so
    writers queue on the busy timeout instead.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate untouched.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after DB contention (attempt %d/%d): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """
    One re-entrant lock per key, created on first use and dropped again once
    no caller holds or waits on it.

    hold() takes several keys at once in sorted order so two callers that
    need overlapping key sets can never deadlock each other.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[Hashable, _Slot] = {}

    def _checkout(self, key: Hashable) -> _Slot:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
            return slot

    def _checkin(self, key: Hashable, slot: _Slot) -> None:
        with self._guard:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    @contextmanager
    def hold(self, keys: Iterable[Hashable]):
        ordered = sorted(set(keys))
        taken = []
        try:
            for key in ordered:
                slot = self._checkout(key)
                taken.append((key, slot))
                slot.lock.acquire()
            yield ordered
        finally:
            for key, slot in reversed(taken):
                slot.lock.release()
                self._checkin(key, slot)

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)
