"""Unit tests for kbase.documents.ledger — bounded FIFO of versions."""

import pytest

from kbase.documents.ledger import VersionLedger
from kbase.documents.models import DocumentSnapshot, FieldChanges, VersionDiff
from kbase.engine.errors import KBNotFoundError


def _snap(n):
    return DocumentSnapshot(title=f"Title {n}", content=f"Content {n}", summary="", tags=[])


def _fill(ledger, count, start=1):
    for n in range(start, start + count):
        ledger.append(_snap(n), VersionDiff(), FieldChanges(content=True), editor_id=1)
    return ledger


class TestAppend:
    def test_sequential_numbers(self):
        ledger = _fill(VersionLedger(), 3)
        assert [v.version_number for v in ledger] == [1, 2, 3]
        assert ledger.last_number == 3

    def test_snapshot_fields_copied(self):
        ledger = VersionLedger()
        version = ledger.append(_snap(1), VersionDiff(), FieldChanges.all_changed(), editor_id=7, note="Initial version")
        assert version.title == "Title 1"
        assert version.edited_by == 7
        assert version.note == "Initial version"
        assert version.changes == FieldChanges.all_changed()

    def test_eleventh_append_evicts_oldest(self):
        ledger = _fill(VersionLedger(capacity=10), 11)
        assert len(ledger) == 10
        assert ledger.oldest.version_number == 2
        assert ledger.latest.version_number == 11
        assert [v.version_number for v in ledger.evicted] == [1]

    def test_numbering_survives_eviction(self):
        ledger = _fill(VersionLedger(capacity=3), 5)
        assert [v.version_number for v in ledger] == [3, 4, 5]
        assert ledger.append(_snap(6), VersionDiff(), FieldChanges(), 1).version_number == 6

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            VersionLedger(capacity=0)


class TestQueries:
    def test_find(self):
        ledger = _fill(VersionLedger(), 3)
        assert ledger.find(2).title == "Title 2"

    def test_find_evicted_raises(self):
        ledger = _fill(VersionLedger(capacity=2), 3)
        with pytest.raises(KBNotFoundError) as exc:
            ledger.find(1)
        assert exc.value.record_type == "version"

    def test_list_newest_first_with_paging(self):
        ledger = _fill(VersionLedger(), 5)
        page = ledger.list(offset=0, limit=2)
        assert [v.version_number for v in page.versions] == [5, 4]
        assert page.total == 5
        assert page.has_more

        last = ledger.list(offset=4, limit=2)
        assert [v.version_number for v in last.versions] == [1]
        assert not last.has_more

    def test_empty(self):
        ledger = VersionLedger()
        assert ledger.latest is None
        assert ledger.list().versions == []


class TestPersistence:
    def test_round_trip_through_json(self):
        ledger = _fill(VersionLedger(capacity=4), 6)
        raw = ledger.to_list()
        assert [item["version_number"] for item in raw] == [3, 4, 5, 6]

        restored = VersionLedger.load(raw, last_number=6, capacity=4)
        assert [v.version_number for v in restored] == [3, 4, 5, 6]
        assert restored.append(_snap(7), VersionDiff(), FieldChanges(), 1).version_number == 7

    def test_to_list_returns_new_list(self):
        ledger = _fill(VersionLedger(), 1)
        assert ledger.to_list() is not ledger.to_list()

    def test_load_uses_stored_counter(self):
        # Counter may be ahead of the newest entry's number
        ledger = VersionLedger.load([], last_number=9)
        assert ledger.append(_snap(10), VersionDiff(), FieldChanges(), 1).version_number == 10

    def test_load_shrinks_to_capacity(self):
        raw = _fill(VersionLedger(capacity=10), 10).to_list()
        ledger = VersionLedger.load(raw, last_number=10, capacity=5)
        assert [v.version_number for v in ledger] == [6, 7, 8, 9, 10]
