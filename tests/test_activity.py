"""Unit tests for kbase.documents.activity — best-effort recording, spool and replay."""

import json

from kbase.db.models import ActivityRecord, DocumentRecord
from kbase.db.session import session_scope
from kbase.documents.activity import UNRECORDED_KEY, ActivityRecorder
from kbase.documents.models import ActivityAction, FieldChanges


def _document(session, title="Doc"):
    row = DocumentRecord(
        title=title,
        content="body",
        current_version=1,
        versions=[],
        created_by=1,
    )
    session.add(row)
    session.flush()
    return row


def _reject_insert(recorder):
    """Make every insert violate the action check constraint."""
    original = ActivityRecorder._insert

    def _insert(session, data):
        return original(recorder, session, {**data, "action": "bogus"})

    recorder._insert = _insert


class TestRecord:
    def test_record_commits_with_session(self, session_factory, activity):
        with session_scope(session_factory) as session:
            row = _document(session)
            recorded = activity.record(session, ActivityAction.CREATED, row, 1, FieldChanges.all_changed())
            assert recorded is not None

        page = activity.feed()
        assert page.total == 1
        item = page.activities[0]
        assert item.action == ActivityAction.CREATED
        assert item.document_title == "Doc"
        assert item.version_number == 1
        assert item.changes == FieldChanges.all_changed()

    def test_failed_insert_does_not_raise(self, session_factory, activity):
        _reject_insert(activity)
        with session_scope(session_factory) as session:
            row = _document(session)
            assert activity.record(session, ActivityAction.CREATED, row, 1, FieldChanges()) is None
            assert len(session.info[UNRECORDED_KEY]) == 1

        # The document still committed
        with session_factory() as session:
            assert session.query(DocumentRecord).count() == 1
            assert session.query(ActivityRecord).count() == 0

    def test_version_number_override(self, session_factory, activity):
        with session_scope(session_factory) as session:
            row = _document(session)
            activity.record(session, ActivityAction.UPDATED, row, 1, FieldChanges(), version_number=4)
        assert activity.feed().activities[0].version_number == 4


class TestSpoolAndReplay:
    def test_spool_then_replay(self, session_factory, activity, spool_dir):
        _reject_insert(activity)
        with session_scope(session_factory) as session:
            row = _document(session, "Spooled")
            activity.record(session, ActivityAction.CREATED, row, 1, FieldChanges.all_changed(),
                            metadata={"new_version": {"title": "Spooled"}})
        assert activity.spool_unrecorded(session) == 1
        assert UNRECORDED_KEY not in session.info
        assert activity.pending_count() == 1

        files = activity._spool.files("activity", "pending")
        assert len(files) == 1
        spooled = json.loads(files[0].read_text().strip())
        assert spooled["action"] == "created"
        assert spooled["document_title"] == "Spooled"

        restored = ActivityRecorder(session_factory, spool_dir=spool_dir).replay_pending()
        assert restored == 1
        assert activity.pending_count() == 0

        item = activity.feed().activities[0]
        assert item.document_title == "Spooled"
        assert item.metadata == {"new_version": {"title": "Spooled"}}

    def test_discard_unrecorded(self, session_factory, activity):
        _reject_insert(activity)
        with session_factory() as session:
            row = _document(session)
            activity.record(session, ActivityAction.CREATED, row, 1, FieldChanges())
            activity.discard_unrecorded(session)
            assert activity.spool_unrecorded(session) == 0

    def test_no_spool_configured(self, session_factory):
        recorder = ActivityRecorder(session_factory)
        _reject_insert(recorder)
        with session_factory() as session:
            row = _document(session)
            recorder.record(session, ActivityAction.CREATED, row, 1, FieldChanges())
            assert recorder.spool_unrecorded(session) == 0
        assert recorder.replay_pending() == 0

    def test_replay_nothing_pending(self, activity):
        assert activity.replay_pending() == 0


class TestQueries:
    def _seed(self, session_factory, activity, count, document_id_offset=0):
        with session_scope(session_factory) as session:
            rows = [_document(session, f"Doc {i}") for i in range(count)]
            for row in rows:
                activity.record(session, ActivityAction.CREATED, row, 1, FieldChanges.all_changed())
        return rows

    def test_feed_newest_first_paged(self, session_factory, activity):
        self._seed(session_factory, activity, 3)
        page = activity.feed(offset=0, limit=2)
        assert [a.document_title for a in page.activities] == ["Doc 2", "Doc 1"]
        assert page.total == 3
        assert page.has_more

        rest = activity.feed(offset=2, limit=2)
        assert [a.document_title for a in rest.activities] == ["Doc 0"]
        assert not rest.has_more

    def test_feed_by_document(self, session_factory, activity):
        rows = self._seed(session_factory, activity, 2)
        page = activity.feed(document_id=rows[0].id)
        assert page.total == 1
        assert page.activities[0].document_id == rows[0].id

    def test_history_oldest_first(self, session_factory, activity):
        rows = self._seed(session_factory, activity, 1)
        with session_scope(session_factory) as session:
            row = session.get(DocumentRecord, rows[0].id)
            activity.record(session, ActivityAction.DELETED, row, 1, FieldChanges())
        history = activity.history(rows[0].id)
        assert [a.action for a in history] == [ActivityAction.CREATED, ActivityAction.DELETED]

    def test_feed_item_has_action_text(self, session_factory, activity):
        self._seed(session_factory, activity, 1)
        item = activity.feed().activities[0].to_feed_item()
        assert item["action_text"] == "created the document"
        assert item["action"] == "created"
