from __future__ import annotations

import json
import logging
import select
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy import event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

TRACKED_TABLES: frozenset[str] = frozenset({"scan_jobs", "scan_results", "diagnosis_reports", "simulation_results"})
NOTIFY_CHANNEL = "row_changes"


@dataclass(frozen=True)
class RowChange:
    table: str
    event: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def record(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})


@dataclass
class Subscription:
    table: str
    callback: Callable[[RowChange], None]
    column: str | None = None
    value: Any = None
    events: frozenset[str] | None = None
    _feed: "ChangeFeed | None" = field(default=None, repr=False)

    def matches(self, change: RowChange) -> bool:
        if change.table != self.table:
            return False
        if self.events is not None and change.event not in self.events:
            return False
        if self.column is not None and change.record.get(self.column) != self.value:
            return False
        return True

    def unsubscribe(self) -> None:
        if self._feed is not None:
            self._feed._remove(self)
            self._feed = None

    @property
    def active(self) -> bool:
        return self._feed is not None


class ChangeFeed:
    """Row-level change notifications, filtered per subscriber.

    Callbacks run on the publishing thread; subscribers that live on an event
    loop hand the change over with ``call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        table: str,
        callback: Callable[[RowChange], None],
        *,
        column: str | None = None,
        value: Any = None,
        events: Iterable[str] | None = None,
    ) -> Subscription:
        sub = Subscription(
            table=table,
            callback=callback,
            column=column,
            value=value,
            events=frozenset(e.upper() for e in events) if events is not None else None,
            _feed=self,
        )
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(sub)
            except ValueError:
                pass

    def publish(self, change: RowChange) -> int:
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(change)]
        for sub in targets:
            try:
                sub.callback(change)
            except Exception:
                logger.exception("realtime.publish.callback_error table=%s event=%s", change.table, change.event)
        return len(targets)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


def _row_dict(obj: Any) -> dict[str, Any]:
    # loaded values only; an expired server default must not trigger a load mid-flush
    state = inspect(obj)
    row = {attr.key: state.dict.get(attr.key) for attr in state.mapper.column_attrs}
    if state.identity:
        for col, value in zip(state.mapper.primary_key, state.identity):
            if row.get(col.key) is None:
                row[col.key] = value
    return row


def _old_row_dict(obj: Any) -> dict[str, Any]:
    state = inspect(obj)
    old = _row_dict(obj)
    for attr in state.mapper.column_attrs:
        hist = state.attrs[attr.key].history
        if hist.has_changes() and hist.deleted:
            old[attr.key] = hist.deleted[0]
    return old


def install_session_hooks(session_factory: sessionmaker, feed: ChangeFeed) -> None:
    """Publish committed INSERT / UPDATE / DELETE of tracked rows to ``feed``."""

    @event.listens_for(session_factory, "after_flush")
    def _collect(session: Session, flush_context: Any) -> None:
        pending: list[RowChange] = session.info.setdefault("row_changes", [])
        for obj in session.new:
            table = getattr(obj, "__tablename__", None)
            if table in TRACKED_TABLES:
                pending.append(RowChange(table=table, event="INSERT", new=_row_dict(obj)))
        for obj in session.dirty:
            table = getattr(obj, "__tablename__", None)
            if table in TRACKED_TABLES and session.is_modified(obj, include_collections=False):
                pending.append(RowChange(table=table, event="UPDATE", new=_row_dict(obj), old=_old_row_dict(obj)))
        for obj in session.deleted:
            table = getattr(obj, "__tablename__", None)
            if table in TRACKED_TABLES:
                pending.append(RowChange(table=table, event="DELETE", old=_row_dict(obj)))

    @event.listens_for(session_factory, "after_commit")
    def _publish(session: Session) -> None:
        pending = session.info.pop("row_changes", [])
        for change in pending:
            feed.publish(change)

    @event.listens_for(session_factory, "after_rollback")
    def _discard(session: Session) -> None:
        session.info.pop("row_changes", None)


def parse_notification(payload: str) -> RowChange | None:
    try:
        data = json.loads(payload)
    except ValueError:
        logger.warning("realtime.parse_notification.invalid_json")
        return None
    if not isinstance(data, dict):
        return None
    table = str(data.get("table") or "")
    op = str(data.get("type") or "").upper()
    if table not in TRACKED_TABLES or op not in {"INSERT", "UPDATE", "DELETE"}:
        return None
    new = data.get("record") if isinstance(data.get("record"), dict) else None
    old = data.get("old_record") if isinstance(data.get("old_record"), dict) else None
    return RowChange(table=table, event=op, new=new, old=old)


class PgNotifyListener:
    """Relays ``pg_notify('row_changes', ...)`` from the database triggers.

    This is how writes made by the workflow engine, outside this process,
    reach the feed. Runs on a daemon thread with its own DBAPI connection.
    """

    def __init__(self, engine: Engine, feed: ChangeFeed, *, channel: str = NOTIFY_CHANNEL, wait_s: float = 5.0) -> None:
        self._engine = engine
        self._feed = feed
        self._channel = channel
        self._wait_s = wait_s
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="pg-notify-listener", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._wait_s + 1)
            self._thread = None

    def _run(self) -> None:
        raw = self._engine.raw_connection()
        try:
            conn = raw.driver_connection
            conn.autocommit = True
            with conn.cursor() as cur:
                cur.execute(f"LISTEN {self._channel}")
            logger.info("realtime.listener.ready channel=%s", self._channel)
            while not self._stop.is_set():
                ready, _, _ = select.select([conn], [], [], self._wait_s)
                if not ready:
                    continue
                conn.poll()
                while conn.notifies:
                    note = conn.notifies.pop(0)
                    change = parse_notification(note.payload)
                    if change is not None:
                        self._feed.publish(change)
        except Exception:
            logger.exception("realtime.listener.crashed channel=%s", self._channel)
        finally:
            raw.close()
