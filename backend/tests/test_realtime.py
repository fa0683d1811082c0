import json
import unittest

from zhinao_geo.models.job import ScanJob
from zhinao_geo.models.profile import Profile
from zhinao_geo.services.realtime import ChangeFeed, RowChange, install_session_hooks, parse_notification
from testing_utils import make_session_factory


class TestChangeFeed(unittest.TestCase):
    def test_filters_by_table_event_and_column(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("scan_jobs", seen.append, column="id", value="job-1", events=("UPDATE",))

        feed.publish(RowChange("scan_jobs", "UPDATE", new={"id": "job-1", "status": "processing"}))
        feed.publish(RowChange("scan_jobs", "UPDATE", new={"id": "job-2", "status": "processing"}))
        feed.publish(RowChange("scan_jobs", "INSERT", new={"id": "job-1", "status": "queued"}))
        feed.publish(RowChange("diagnosis_reports", "UPDATE", new={"id": "job-1"}))

        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].new["status"], "processing")

    def test_unsubscribe(self):
        feed = ChangeFeed()
        seen = []
        sub = feed.subscribe("scan_jobs", seen.append)
        self.assertEqual(feed.subscriber_count(), 1)
        sub.unsubscribe()
        sub.unsubscribe()
        self.assertEqual(feed.subscriber_count(), 0)
        self.assertEqual(feed.publish(RowChange("scan_jobs", "UPDATE", new={"id": "x"})), 0)
        self.assertEqual(seen, [])

    def test_failing_callback_does_not_stop_others(self):
        feed = ChangeFeed()
        seen = []

        def broken(change):
            raise RuntimeError("boom")

        feed.subscribe("scan_jobs", broken)
        feed.subscribe("scan_jobs", seen.append)
        self.assertEqual(feed.publish(RowChange("scan_jobs", "DELETE", old={"id": "x"})), 2)
        self.assertEqual(len(seen), 1)


class TestSessionHooks(unittest.TestCase):
    def setUp(self):
        self.SessionLocal = make_session_factory()
        self.feed = ChangeFeed()
        install_session_hooks(self.SessionLocal, self.feed)
        self.changes = []
        self.feed.subscribe("scan_jobs", self.changes.append)

    def test_insert_and_update_are_published_after_commit(self):
        db = self.SessionLocal()
        try:
            job = ScanJob(user_id="user-1", brand_name="Acme", search_query="q")
            db.add(job)
            db.flush()
            self.assertEqual(self.changes, [])
            db.commit()

            self.assertEqual(len(self.changes), 1)
            inserted = self.changes[0]
            self.assertEqual(inserted.event, "INSERT")
            self.assertEqual(inserted.new["id"], job.id)
            self.assertEqual(inserted.new["status"], "queued")

            job.status = "processing"
            db.commit()
            updated = self.changes[1]
            self.assertEqual(updated.event, "UPDATE")
            self.assertEqual(updated.new["status"], "processing")
            self.assertEqual(updated.old["status"], "queued")
            self.assertEqual(updated.new["user_id"], "user-1")
        finally:
            db.close()

    def test_rollback_discards(self):
        db = self.SessionLocal()
        try:
            db.add(ScanJob(user_id="user-1", brand_name="Acme", search_query="q"))
            db.flush()
            db.rollback()
            self.assertEqual(self.changes, [])
        finally:
            db.close()

    def test_untracked_tables_ignored(self):
        seen = []
        self.feed.subscribe("profiles", seen.append)
        db = self.SessionLocal()
        try:
            db.add(Profile(id="user-1", credits_balance=5))
            db.commit()
        finally:
            db.close()
        self.assertEqual(seen, [])

    def test_delete(self):
        db = self.SessionLocal()
        try:
            job = ScanJob(user_id="user-1", brand_name="Acme", search_query="q")
            db.add(job)
            db.commit()
            job_id = job.id
            db.delete(job)
            db.commit()
        finally:
            db.close()
        self.assertEqual(self.changes[-1].event, "DELETE")
        self.assertEqual(self.changes[-1].old["id"], job_id)


class TestParseNotification(unittest.TestCase):
    def test_valid_payload(self):
        change = parse_notification(
            json.dumps(
                {
                    "table": "simulation_results",
                    "type": "UPDATE",
                    "record": {"id": "s1", "status": "completed"},
                    "old_record": {"id": "s1", "status": "processing"},
                }
            )
        )
        self.assertEqual(change, RowChange("simulation_results", "UPDATE", {"id": "s1", "status": "completed"}, {"id": "s1", "status": "processing"}))

    def test_rejects_garbage(self):
        self.assertIsNone(parse_notification("not json"))
        self.assertIsNone(parse_notification("[]"))
        self.assertIsNone(parse_notification(json.dumps({"table": "profiles", "type": "UPDATE"})))
        self.assertIsNone(parse_notification(json.dumps({"table": "scan_jobs", "type": "TRUNCATE"})))


if __name__ == "__main__":
    unittest.main()
