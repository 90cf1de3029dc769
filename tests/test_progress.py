from __future__ import annotations

import io

from powerload.loadgen.progress import DispatchCounters, ProgressReporter, render_progress


def test_render_progress_line() -> None:
    line = render_progress(completed=40, in_progress=5, total=100, width=10)
    assert line == "[████░░░░░░] 40.0% (40/100) - In progress: 5"


def test_render_progress_without_requests() -> None:
    line = render_progress(completed=0, in_progress=0, total=0, width=4)
    assert line.startswith("[████] 100.0%")


def test_tick_skips_while_render_in_progress() -> None:
    stream = io.StringIO()
    reporter = ProgressReporter(DispatchCounters(completed=1, in_progress=2), total=4, stream=stream)
    assert reporter.tick()
    reporter._render_lock.acquire()
    try:
        assert not reporter.tick()
    finally:
        reporter._render_lock.release()
    assert stream.getvalue().count("\r") == 1


def test_stop_is_idempotent() -> None:
    stream = io.StringIO()
    counters = DispatchCounters()
    reporter = ProgressReporter(counters, total=2, stream=stream, interval_sec=0.01)
    reporter.start()
    counters.completed = 2
    reporter.stop()
    reporter.stop()
    output = stream.getvalue()
    assert output.count("\n") == 1
    assert "(2/2)" in output.splitlines()[-1]
