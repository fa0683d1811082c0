"""Turns rows mutated by the workflow engine into a small UI state machine.

A tracker reads the row once, then listens on the change feed and polls as a
safety net, because the engine's write can land before the subscription is
open. Whichever channel sees a terminal status first wins; the state never
moves backwards after that.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

from zhinao_geo.models.job import ACTIVE_STATUSES, JobStatus
from zhinao_geo.services.cache import TTLCache
from zhinao_geo.services.realtime import ChangeFeed, RowChange, Subscription

logger = logging.getLogger(__name__)


class TrackerState(str, enum.Enum):
    IDLE = "idle"
    CHECKING = "checking"
    PROCESSING = "processing"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: str
    title: str
    description: str
    table: str
    record_id: str
    status: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "title": self.title,
            "description": self.description,
            "table": self.table,
            "record_id": self.record_id,
            "status": self.status,
        }


@dataclass(frozen=True)
class TrackedTable:
    name: str
    success_title: str
    success_description: str
    failed_title: str
    failed_description: str
    invalidate: tuple[str, ...] = ()
    id_column: str = "id"

    def notification_for(self, record_id: str, status: str) -> Notification | None:
        if status == JobStatus.COMPLETED.value:
            return Notification("success", self.success_title, self.success_description, self.name, record_id, status)
        if status == JobStatus.FAILED.value:
            return Notification("error", self.failed_title, self.failed_description, self.name, record_id, status)
        return None


SCAN_JOBS = TrackedTable(
    name="scan_jobs",
    success_title="Scan complete",
    success_description="Visibility results are ready.",
    failed_title="Scan failed",
    failed_description="Please try again.",
    invalidate=("scan-jobs", "credit-transactions", "monthly-credit-usage"),
)
DIAGNOSIS_REPORTS = TrackedTable(
    name="diagnosis_reports",
    success_title="Diagnosis complete",
    success_description="The diagnosis report is ready.",
    failed_title="Diagnosis failed",
    failed_description="Please try again.",
    invalidate=("diagnosis-reports", "credit-transactions", "monthly-credit-usage"),
)
SIMULATION_RESULTS = TrackedTable(
    name="simulation_results",
    success_title="Simulation finished",
    success_description="Review the predicted impact.",
    failed_title="Simulation failed",
    failed_description="Please try again.",
    invalidate=("simulations", "credit-transactions", "monthly-credit-usage"),
)

TRACKED_KINDS: dict[str, TrackedTable] = {
    "scan": SCAN_JOBS,
    "diagnosis": DIAGNOSIS_REPORTS,
    "simulation": SIMULATION_RESULTS,
}


class NotificationDeduper:
    """Remembers ``(record_id, status)`` pairs already announced.

    The set is dropped wholesale once ``window_s`` has passed since the last
    clear, so a long session does not grow it without bound.
    """

    def __init__(self, *, window_s: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._window_s = float(window_s)
        self._clock = clock
        self._seen: set[str] = set()
        self._cleared_at = clock()
        self._lock = threading.Lock()

    def first_time(self, record_id: str, status: str) -> bool:
        key = f"{record_id}_{status}"
        with self._lock:
            now = self._clock()
            if now - self._cleared_at >= self._window_s:
                self._seen.clear()
                self._cleared_at = now
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def __len__(self) -> int:
        return len(self._seen)


@dataclass(frozen=True)
class TrackerSnapshot:
    state: TrackerState
    record_id: str
    status: str | None
    timed_out: bool
    row: dict[str, Any] | None
    notification: Notification | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "record_id": self.record_id,
            "status": self.status,
            "timed_out": self.timed_out,
            "row": self.row,
            "notification": self.notification.as_dict() if self.notification else None,
        }


class JobTracker:
    def __init__(
        self,
        table: TrackedTable,
        record_id: str,
        *,
        fetch_row: Callable[[str], dict[str, Any] | None],
        deduper: NotificationDeduper,
        feed: ChangeFeed | None = None,
        cache: TTLCache | None = None,
        notify: Callable[[Notification], None] | None = None,
        poll_interval_s: float = 3.0,
        timeout_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.table = table
        self.record_id = record_id
        self._fetch_row = fetch_row
        self._deduper = deduper
        self._feed = feed
        self._cache = cache
        self._notify = notify
        self._poll_interval_s = float(poll_interval_s)
        self._timeout_s = float(timeout_s)
        self._clock = clock

        self.state = TrackerState.IDLE
        self.row: dict[str, Any] | None = None
        self.timed_out = False
        self._pending_notification: Notification | None = None
        self._subscription: Subscription | None = None
        self._wakeups: asyncio.Queue[RowChange] | None = None

    @property
    def status(self) -> str | None:
        if self.row is None:
            return None
        value = self.row.get("status")
        return str(value) if value is not None else None

    def snapshot(self) -> TrackerSnapshot:
        note, self._pending_notification = self._pending_notification, None
        return TrackerSnapshot(
            state=self.state,
            record_id=self.record_id,
            status=self.status,
            timed_out=self.timed_out,
            row=self.row,
            notification=note,
        )

    def begin_check(self) -> None:
        self.state = TrackerState.CHECKING
        self.timed_out = False

    def apply(self, row: dict[str, Any] | None) -> bool:
        """Fold one observation of the row into the state; True when it changed."""
        if self.state in (TrackerState.RESULT, TrackerState.ERROR):
            return False
        if row is None:
            if self.state == TrackerState.CHECKING:
                self.state = TrackerState.IDLE
                return True
            return False

        live = self.state == TrackerState.PROCESSING
        status = str(row.get("status") or "")
        self.row = row

        if status == JobStatus.COMPLETED.value:
            self.state = TrackerState.RESULT
            self._invalidate()
            if live:
                self._announce(status)
            return True
        if status == JobStatus.FAILED.value:
            self.state = TrackerState.ERROR
            if live:
                self._announce(status)
            return True
        if self.state != TrackerState.PROCESSING:
            self.state = TrackerState.PROCESSING
            return True
        # same non-terminal status, only fields moved
        return False

    def check_timeout(self, started_at: float) -> bool:
        if self.timed_out or self.state != TrackerState.PROCESSING:
            return False
        if self._clock() - started_at >= self._timeout_s:
            self.timed_out = True
            logger.info("tracker.timeout table=%s record_id=%s", self.table.name, self.record_id)
            return True
        return False

    def reset(self) -> None:
        self.close()
        self.state = TrackerState.IDLE
        self.row = None
        self.timed_out = False
        self._pending_notification = None

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _announce(self, status: str) -> None:
        if not self._deduper.first_time(self.record_id, status):
            return
        note = self.table.notification_for(self.record_id, status)
        if note is None:
            return
        self._pending_notification = note
        if self._notify is not None:
            self._notify(note)

    def _invalidate(self) -> None:
        if self._cache is None:
            return
        for prefix in self.table.invalidate:
            self._cache.invalidate(prefix)

    def _open_subscription(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._feed is None or self._subscription is not None:
            return
        queue: asyncio.Queue[RowChange] = asyncio.Queue()
        self._wakeups = queue

        def _on_change(change: RowChange) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, change)
            except RuntimeError:
                # loop already closed; the tracker is gone
                pass

        self._subscription = self._feed.subscribe(
            self.table.name,
            _on_change,
            column=self.table.id_column,
            value=self.record_id,
            events=("UPDATE",),
        )

    async def _read(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._fetch_row, self.record_id)

    async def _wait(self) -> str:
        if self._wakeups is None:
            await asyncio.sleep(self._poll_interval_s)
            return "poll"
        try:
            await asyncio.wait_for(self._wakeups.get(), timeout=self._poll_interval_s)
        except asyncio.TimeoutError:
            return "poll"
        # collapse a burst of events into a single re-read
        while not self._wakeups.empty():
            self._wakeups.get_nowait()
        return "push"

    async def run(self) -> AsyncIterator[TrackerSnapshot]:
        self.begin_check()
        yield self.snapshot()

        self.apply(await self._read())
        yield self.snapshot()
        if self.state != TrackerState.PROCESSING:
            return

        self._open_subscription(asyncio.get_running_loop())
        started_at = self._clock()
        try:
            while self.state == TrackerState.PROCESSING:
                source = await self._wait()
                changed = self.apply(await self._read())
                if changed:
                    logger.info(
                        "tracker.transition table=%s record_id=%s state=%s via=%s",
                        self.table.name,
                        self.record_id,
                        self.state.value,
                        source,
                    )
                if self.check_timeout(started_at):
                    changed = True
                if changed:
                    yield self.snapshot()
        finally:
            self.close()


class StatusChangeNotifier:
    """Announces ``queued|processing -> completed|failed`` transitions for one user."""

    def __init__(
        self,
        table: TrackedTable,
        *,
        deduper: NotificationDeduper,
        notify: Callable[[Notification], None],
        cache: TTLCache | None = None,
        owner_column: str | None = None,
        owner_id: str | None = None,
        on_status_change: Callable[[str, str], None] | None = None,
    ) -> None:
        self.table = table
        self._deduper = deduper
        self._notify = notify
        self._cache = cache
        self._owner_column = owner_column
        self._owner_id = owner_id
        self._on_status_change = on_status_change

    def handle(self, change: RowChange) -> Notification | None:
        if change.table != self.table.name or change.event != "UPDATE":
            return None
        new = change.new or {}
        old = change.old or {}
        if self._owner_column is not None and new.get(self._owner_column) != self._owner_id:
            return None

        record_id = str(new.get(self.table.id_column) or "")
        new_status = str(new.get("status") or "")
        old_status = str(old.get("status") or "")
        if not record_id or old_status not in ACTIVE_STATUSES:
            return None
        note = self.table.notification_for(record_id, new_status)
        if note is None:
            return None
        if not self._deduper.first_time(record_id, new_status):
            return None

        if self._cache is not None:
            for prefix in self.table.invalidate:
                self._cache.invalidate(prefix)
        self._notify(note)
        if self._on_status_change is not None:
            self._on_status_change(new_status, record_id)
        return note

    def attach(self, feed: ChangeFeed) -> Subscription:
        return feed.subscribe(
            self.table.name,
            self.handle,
            column=self._owner_column,
            value=self._owner_id,
            events=("UPDATE",),
        )


def invalidate_on_change(feed: ChangeFeed, cache: TTLCache) -> list[Subscription]:
    """Drop cached list views whenever a job row or a scan result is written.

    Covers writers that bypass the API, such as the workflow engine, so a list
    view never outlives the row it was built from.
    """
    prefixes_by_table = {t.name: t.invalidate for t in TRACKED_KINDS.values()}
    prefixes_by_table["scan_results"] = SCAN_JOBS.invalidate

    def subscriber(prefixes: tuple[str, ...]) -> Callable[[RowChange], None]:
        def drop(change: RowChange) -> None:
            for prefix in prefixes:
                cache.invalidate(prefix)

        return drop

    return [feed.subscribe(table, subscriber(prefixes)) for table, prefixes in prefixes_by_table.items()]
