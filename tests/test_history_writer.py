import pytest

from rank_tracker.errors import HistoryWriteError
from rank_tracker.storage import HistoryBatchWriter


class RecordingStore:
    """Captures bulk inserts, optionally failing on one call."""

    def __init__(self, fail_on=None):
        self.calls: list[list[dict]] = []
        self.fail_on = fail_on

    def bulk_insert_rank_history(self, rows):
        if self.fail_on is not None and len(self.calls) + 1 == self.fail_on:
            raise RuntimeError("database is locked")
        self.calls.append(rows)
        return len(rows)


def make_rows(count):
    return [{"product_pk": "p1", "keyword": f"kw{i}", "rank": i + 1} for i in range(count)]


def test_rows_are_split_into_sequential_chunks():
    store = RecordingStore()
    writer = HistoryBatchWriter(store, batch_size=500)

    written = writer.write(make_rows(1050))

    assert written == 1050
    assert [len(call) for call in store.calls] == [500, 500, 50]
    assert store.calls[1][0]["keyword"] == "kw500"


def test_empty_input_writes_nothing():
    store = RecordingStore()

    assert HistoryBatchWriter(store).write([]) == 0
    assert store.calls == []


def test_failing_chunk_stops_the_write_and_reports_progress():
    store = RecordingStore(fail_on=2)
    writer = HistoryBatchWriter(store, batch_size=200)

    with pytest.raises(HistoryWriteError) as excinfo:
        writer.write(make_rows(700))

    assert excinfo.value.rows_written == 200
    assert excinfo.value.details == {"batch": 2, "batches": 4}
    assert len(store.calls) == 1


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        HistoryBatchWriter(RecordingStore(), batch_size=0)


def test_writes_append_to_the_database(db):
    product = db.create_product("owner-1", "12345", "Wireless earbuds")
    writer = HistoryBatchWriter(db, batch_size=2)

    rows = [{"product_pk": product.id, "keyword": "earbuds", "rank": r} for r in (4, None, 9)]
    writer.write(rows)
    writer.write(rows)

    assert db.count_rank_history(product.id) == 6
