import gc
import threading

import pytest

from imageboard.metrics import ActivityCounters


def test_increment_accumulates_by_labels():
    counters = ActivityCounters()
    counters.increment("http_requests_total", method="GET", status=200)
    counters.increment("http_requests_total", method="GET", status=200)
    counters.increment("http_requests_total", method="POST", status=201)

    assert counters.total("http_requests_total", method="GET", status=200) == 2
    assert counters.total("http_requests_total", status=201, method="POST") == 1
    assert counters.total("http_requests_total", method="DELETE", status=204) == 0


def test_totals_sum_every_thread_shard():
    counters = ActivityCounters()

    def worker():
        for _ in range(1000):
            counters.increment("http_requests_total", method="GET", status=200)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # Counts from finished threads are kept after their shards retire.
    assert counters.total("http_requests_total", method="GET", status=200) == 4000


def test_reset_clears_all_shards():
    counters = ActivityCounters()
    counters.increment("http_exceptions_total")
    counters.reset()
    assert counters.totals() == {}
    assert counters.total("http_exceptions_total") == 0


def test_track_job_counts_success():
    counters = ActivityCounters()
    with counters.track_job():
        pass

    assert counters.total("jobs_attempts_total") == 1
    assert counters.total("jobs_worked_total") == 1
    assert counters.total("jobs_exceptions_total") == 0
    assert counters.total("jobs_duration_seconds_total") >= 0


def test_track_job_counts_failure_and_reraises():
    counters = ActivityCounters()
    with pytest.raises(RuntimeError):
        with counters.track_job():
            raise RuntimeError("boom")

    assert counters.total("jobs_attempts_total") == 1
    assert counters.total("jobs_worked_total") == 0
    assert counters.total("jobs_exceptions_total") == 1


def test_finished_threads_do_not_accumulate_shards():
    """One short-lived thread per request must not grow the shard list."""
    counters = ActivityCounters()
    for _ in range(300):
        thread = threading.Thread(
            target=counters.increment,
            args=("http_requests_total",),
            kwargs={"method": "GET", "status": 200},
        )
        thread.start()
        thread.join()
    gc.collect()

    assert len(counters._shards) < 10
    assert counters.total("http_requests_total", method="GET", status=200) == 300


def test_reset_clears_retired_totals():
    counters = ActivityCounters()
    thread = threading.Thread(target=counters.increment, args=("http_exceptions_total",))
    thread.start()
    thread.join()
    gc.collect()

    counters.reset()

    assert counters.total("http_exceptions_total") == 0
