import io

from geoload.aggregator import ResultAggregator
from geoload.models import Delivered, FatalFailure, RecordFailure

from helpers import point


def test_counts_add_up_across_outcomes():
    agg = ResultAggregator(out=io.StringIO())
    agg.record(None, Delivered(success_count=3))
    agg.record(None, Delivered(success_count=1, failures=[RecordFailure(point("x"), "bad")]))
    agg.record(None, FatalFailure("down", [point("y"), point("z")]))
    res = agg.snapshot()
    assert res.success_count == 4
    assert res.failed_count == 3
    assert res.total == 7
    assert res.failure_entries == []


def test_verbose_keeps_failure_entries_and_prints():
    buf = io.StringIO()
    agg = ResultAggregator(verbose=True, stream=True, out=buf)
    agg.record(None, FatalFailure("down", [point("y")]))
    res = agg.snapshot()
    assert [e.record["id"] for e in res.failure_entries] == ["y"]
    assert res.failure_entries[0].reason == "down"
    assert "Failed to upload" in buf.getvalue()
    assert "failed feature count :1" in buf.getvalue()


def test_snapshot_is_a_copy():
    agg = ResultAggregator(verbose=True, out=io.StringIO())
    agg.record(None, FatalFailure("down", [point("y")]))
    snap = agg.snapshot()
    agg.record(None, FatalFailure("down", [point("z")]))
    assert snap.failed_count == 1
    assert len(snap.failure_entries) == 1


def test_progress_percentage():
    agg = ResultAggregator(total_tasks=4, out=io.StringIO())
    agg.record(None, Delivered(success_count=1))
    assert agg.progress_line() == "\ruploaded 25.00%"
