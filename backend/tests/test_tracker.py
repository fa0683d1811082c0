import asyncio
import unittest

from zhinao_geo.models.job import ScanJob
from zhinao_geo.models.profile import Profile
from zhinao_geo.models.scan_result import ScanResult
from zhinao_geo.services.cache import TTLCache
from zhinao_geo.services.job_queries import make_row_fetcher
from zhinao_geo.services.job_triggers import JobTriggerService
from zhinao_geo.services.realtime import ChangeFeed, RowChange, install_session_hooks
from zhinao_geo.services.tracker import (
    DIAGNOSIS_REPORTS,
    SCAN_JOBS,
    SIMULATION_RESULTS,
    JobTracker,
    NotificationDeduper,
    StatusChangeNotifier,
    TrackerState,
    invalidate_on_change,
)
from testing_utils import RecordingProxy, make_session_factory


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class RowStore:
    def __init__(self, rows=None) -> None:
        self.rows = dict(rows or {})
        self.reads = 0

    def fetch(self, record_id):
        self.reads += 1
        row = self.rows.get(record_id)
        return dict(row) if row is not None else None


async def collect(agen, limit=10, stop=None):
    out = []
    async for snap in agen:
        out.append(snap)
        if stop is not None and stop(snap):
            break
        if len(out) >= limit:
            break
    await agen.aclose()
    return out


class TestDeduper(unittest.TestCase):
    def test_once_per_window(self):
        clock = FakeClock()
        dedup = NotificationDeduper(window_s=60, clock=clock)
        self.assertTrue(dedup.first_time("job-1", "completed"))
        self.assertFalse(dedup.first_time("job-1", "completed"))
        self.assertTrue(dedup.first_time("job-1", "failed"))
        self.assertTrue(dedup.first_time("job-2", "completed"))

        clock.now = 61
        self.assertTrue(dedup.first_time("job-1", "completed"))
        self.assertEqual(len(dedup), 1)


class TestApply(unittest.TestCase):
    def setUp(self):
        self.notes = []
        self.cache = TTLCache()
        self.tracker = JobTracker(
            SCAN_JOBS,
            "job-1",
            fetch_row=lambda _id: None,
            deduper=NotificationDeduper(),
            cache=self.cache,
            notify=self.notes.append,
        )

    def test_missing_row_goes_idle(self):
        self.tracker.begin_check()
        self.assertTrue(self.tracker.apply(None))
        self.assertEqual(self.tracker.state, TrackerState.IDLE)

    def test_live_completion_notifies_once(self):
        self.cache.set("scan-jobs:user-1:20", ["stale"])
        self.tracker.begin_check()
        self.tracker.apply({"id": "job-1", "status": "queued"})
        self.assertEqual(self.tracker.state, TrackerState.PROCESSING)
        self.tracker.apply({"id": "job-1", "status": "processing"})
        self.assertEqual(self.tracker.state, TrackerState.PROCESSING)

        self.assertTrue(self.tracker.apply({"id": "job-1", "status": "completed"}))
        self.assertEqual(self.tracker.state, TrackerState.RESULT)
        self.assertEqual(len(self.notes), 1)
        self.assertEqual(self.notes[0].level, "success")
        self.assertIsNone(self.cache.get("scan-jobs:user-1:20"))

        self.assertFalse(self.tracker.apply({"id": "job-1", "status": "completed"}))
        self.assertEqual(len(self.notes), 1)

    def test_terminal_is_sticky(self):
        self.tracker.begin_check()
        self.tracker.apply({"id": "job-1", "status": "processing"})
        self.tracker.apply({"id": "job-1", "status": "failed"})
        self.assertEqual(self.tracker.state, TrackerState.ERROR)
        self.assertFalse(self.tracker.apply({"id": "job-1", "status": "processing"}))
        self.assertEqual(self.tracker.state, TrackerState.ERROR)
        self.assertEqual(self.notes[0].level, "error")

    def test_already_finished_on_first_read_is_silent(self):
        self.tracker.begin_check()
        self.tracker.apply({"id": "job-1", "status": "completed"})
        self.assertEqual(self.tracker.state, TrackerState.RESULT)
        self.assertEqual(self.notes, [])

    def test_field_only_update_ignored(self):
        self.tracker.begin_check()
        self.tracker.apply({"id": "job-1", "status": "processing", "avs_score": None})
        self.assertFalse(self.tracker.apply({"id": "job-1", "status": "processing", "avs_score": 12}))

    def test_reset(self):
        self.tracker.begin_check()
        self.tracker.apply({"id": "job-1", "status": "completed"})
        self.tracker.reset()
        self.assertEqual(self.tracker.state, TrackerState.IDLE)
        self.assertIsNone(self.tracker.row)
        self.assertFalse(self.tracker.timed_out)


class TestRun(unittest.IsolatedAsyncioTestCase):
    async def test_finished_before_subscribe(self):
        store = RowStore({"d1": {"id": "d1", "status": "completed"}})
        feed = ChangeFeed()
        tracker = JobTracker(DIAGNOSIS_REPORTS, "d1", fetch_row=store.fetch, deduper=NotificationDeduper(), feed=feed)
        snaps = await asyncio.wait_for(collect(tracker.run()), timeout=5)
        self.assertEqual([s.state for s in snaps], [TrackerState.CHECKING, TrackerState.RESULT])
        self.assertEqual(feed.subscriber_count(), 0)

    async def test_unknown_record_is_idle(self):
        tracker = JobTracker(SCAN_JOBS, "missing", fetch_row=RowStore().fetch, deduper=NotificationDeduper())
        snaps = await asyncio.wait_for(collect(tracker.run()), timeout=5)
        self.assertEqual(snaps[-1].state, TrackerState.IDLE)

    async def test_push_update_completes(self):
        store = RowStore({"s1": {"id": "s1", "status": "queued"}})
        feed = ChangeFeed()
        notes = []
        tracker = JobTracker(
            SIMULATION_RESULTS,
            "s1",
            fetch_row=store.fetch,
            deduper=NotificationDeduper(),
            feed=feed,
            notify=notes.append,
            poll_interval_s=30,
        )
        agen = tracker.run()
        snaps = []

        async def drive():
            async for snap in agen:
                snaps.append(snap)
                if snap.state == TrackerState.PROCESSING and feed.subscriber_count() == 0:
                    # subscription opens right after this snapshot is consumed
                    asyncio.get_running_loop().call_later(0.05, publish)
                if snap.state == TrackerState.RESULT:
                    break
            await agen.aclose()

        def publish():
            store.rows["s1"] = {"id": "s1", "status": "completed"}
            feed.publish(RowChange("simulation_results", "UPDATE", new={"id": "s1", "status": "completed"}))

        await asyncio.wait_for(drive(), timeout=5)
        self.assertEqual(snaps[-1].state, TrackerState.RESULT)
        self.assertEqual(snaps[-1].notification.title, SIMULATION_RESULTS.success_title)
        self.assertEqual(len(notes), 1)
        self.assertEqual(feed.subscriber_count(), 0)

    async def test_polling_catches_missed_event(self):
        store = RowStore({"job-1": {"id": "job-1", "status": "processing"}})
        feed = ChangeFeed()
        tracker = JobTracker(
            SCAN_JOBS,
            "job-1",
            fetch_row=store.fetch,
            deduper=NotificationDeduper(),
            feed=feed,
            poll_interval_s=0.01,
        )
        agen = tracker.run()
        first = await agen.__anext__()
        second = await agen.__anext__()
        self.assertEqual(first.state, TrackerState.CHECKING)
        self.assertEqual(second.state, TrackerState.PROCESSING)

        # written without any change event
        store.rows["job-1"] = {"id": "job-1", "status": "failed"}
        third = await asyncio.wait_for(agen.__anext__(), timeout=5)
        self.assertEqual(third.state, TrackerState.ERROR)
        self.assertEqual(third.notification.level, "error")
        await agen.aclose()

    async def test_soft_timeout_keeps_state(self):
        store = RowStore({"job-1": {"id": "job-1", "status": "processing"}})
        clock = FakeClock()

        def fetch(record_id):
            clock.now += 30
            return store.fetch(record_id)

        tracker = JobTracker(
            SCAN_JOBS,
            "job-1",
            fetch_row=fetch,
            deduper=NotificationDeduper(),
            poll_interval_s=0.01,
            timeout_s=60,
            clock=clock,
        )
        snaps = await asyncio.wait_for(collect(tracker.run(), stop=lambda s: s.timed_out), timeout=5)
        self.assertTrue(snaps[-1].timed_out)
        self.assertEqual(snaps[-1].state, TrackerState.PROCESSING)
        self.assertEqual(tracker.state, TrackerState.PROCESSING)


class TestInvalidateOnChange(unittest.TestCase):
    def test_row_writes_drop_list_views(self):
        feed = ChangeFeed()
        cache = TTLCache()
        subs = invalidate_on_change(feed, cache)
        cache.set("scan-jobs:user-1:20", ["queued"])
        cache.set("credit-transactions:user-1:20", ["debit"])
        cache.set("simulations:user-1", ["old"])

        feed.publish(RowChange("scan_results", "INSERT", new={"id": "r1", "job_id": "job-1"}))
        self.assertIsNone(cache.get("scan-jobs:user-1:20"))
        self.assertIsNone(cache.get("credit-transactions:user-1:20"))
        self.assertEqual(cache.get("simulations:user-1"), ["old"])

        feed.publish(RowChange("simulation_results", "UPDATE", new={"id": "s1", "status": "processing"}))
        self.assertIsNone(cache.get("simulations:user-1"))

        for sub in subs:
            sub.unsubscribe()
        self.assertEqual(feed.subscriber_count(), 0)


class TestMonitoringRun(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.SessionLocal = make_session_factory()
        self.feed = ChangeFeed()
        install_session_hooks(self.SessionLocal, self.feed)
        self.cache = TTLCache()
        invalidate_on_change(self.feed, self.cache)
        self.db = self.SessionLocal()
        self.db.add(Profile(id="user-1", credits_balance=10))
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def engine_finishes(self, job_id):
        with self.SessionLocal() as db:
            job = db.get(ScanJob, job_id)
            job.status = "completed"
            db.add(ScanResult(job_id=job.id, model_name="deepseek-v3", avs_score=72))
            db.commit()

    async def test_queued_scan_ends_with_scores(self):
        proxy = RecordingProxy()
        outcome = await JobTriggerService(self.db, proxy, user_id="user-1", cache=self.cache).trigger_monitoring(
            brand_name="Acme", search_query="best crm", competitors=None, models=["deepseek-v3"]
        )
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status, "queued")
        self.assertEqual(proxy.calls[0][1]["job_id"], outcome.record_id)

        notes = []
        tracker = JobTracker(
            SCAN_JOBS,
            outcome.record_id,
            fetch_row=make_row_fetcher(self.SessionLocal, "scan", "user-1"),
            deduper=NotificationDeduper(),
            feed=self.feed,
            cache=self.cache,
            notify=notes.append,
            poll_interval_s=30,
        )
        agen = tracker.run()
        snaps = []
        scheduled = False

        async def drive():
            nonlocal scheduled
            async for snap in agen:
                snaps.append(snap)
                if snap.state == TrackerState.PROCESSING and not scheduled:
                    scheduled = True
                    asyncio.get_running_loop().call_later(0.05, self.engine_finishes, outcome.record_id)
                if snap.state == TrackerState.RESULT:
                    break
            await agen.aclose()

        await asyncio.wait_for(drive(), timeout=5)
        self.assertEqual(
            [s.state for s in snaps],
            [TrackerState.CHECKING, TrackerState.PROCESSING, TrackerState.RESULT],
        )
        final = snaps[-1].as_dict()
        self.assertEqual(final["status"], "completed")
        self.assertEqual([r["avs_score"] for r in final["row"]["results"]], [72])
        self.assertEqual(len(notes), 1)
        self.assertEqual(notes[0].level, "success")


class TestStatusChangeNotifier(unittest.TestCase):
    def setUp(self):
        self.notes = []
        self.transitions = []
        self.deduper = NotificationDeduper()
        self.notifier = StatusChangeNotifier(
            SCAN_JOBS,
            deduper=self.deduper,
            notify=self.notes.append,
            owner_column="user_id",
            owner_id="user-1",
            on_status_change=lambda status, rid: self.transitions.append((status, rid)),
        )

    def _update(self, old, new, user_id="user-1", record_id="job-1"):
        return RowChange(
            "scan_jobs",
            "UPDATE",
            new={"id": record_id, "status": new, "user_id": user_id},
            old={"id": record_id, "status": old},
        )

    def test_active_to_terminal(self):
        note = self.notifier.handle(self._update("processing", "completed"))
        self.assertEqual(note.status, "completed")
        self.assertEqual(self.transitions, [("completed", "job-1")])
        self.assertIsNone(self.notifier.handle(self._update("processing", "completed")))
        self.assertEqual(len(self.notes), 1)

    def test_ignores_other_transitions(self):
        self.assertIsNone(self.notifier.handle(self._update("queued", "processing")))
        self.assertIsNone(self.notifier.handle(self._update("completed", "completed")))
        self.assertIsNone(self.notifier.handle(RowChange("scan_jobs", "INSERT", new={"id": "j", "status": "completed"})))
        self.assertIsNone(self.notifier.handle(self._update("queued", "failed", user_id="user-2")))
        self.assertEqual(self.notes, [])

    def test_shares_deduper_with_trackers(self):
        self.deduper.first_time("job-1", "failed")
        self.assertIsNone(self.notifier.handle(self._update("queued", "failed")))

    def test_attach(self):
        feed = ChangeFeed()
        sub = self.notifier.attach(feed)
        feed.publish(self._update("queued", "failed"))
        feed.publish(self._update("queued", "failed", user_id="user-2", record_id="job-2"))
        self.assertEqual([n.record_id for n in self.notes], ["job-1"])
        sub.unsubscribe()


if __name__ == "__main__":
    unittest.main()
