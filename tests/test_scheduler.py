"""
Unit tests for batch scheduling.

Run with: pytest tests/ -v
"""

import os
import sys
import threading
import time
import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from page_translator.errors import IoError
from page_translator.models import PageResult
from page_translator.scheduler import BatchReport, BatchScheduler, PageOutcome


def _process(page):
    if page.startswith("bad"):
        raise IoError(f"Failed to decode image: {page}")
    if page.startswith("crash"):
        raise RuntimeError("unexpected")
    # Later pages finish first when run in parallel
    time.sleep(0.01 * (10 - int(page[-1])))
    return PageResult(source_path=page, region_count=int(page[-1]))


class TestBatchScheduler:
    """Tests for running pages sequentially and in parallel."""

    @pytest.mark.parametrize("single", [True, False])
    def test_all_pages_succeed(self, single):
        """Every page is reported once, in input order."""
        pages = [f"page{i}" for i in range(6)]
        report = BatchScheduler(workers=4, single=single, show_progress=False).run(pages, _process)

        assert [o.source_path for o in report.outcomes] == pages
        assert [o.result.region_count for o in report.outcomes] == list(range(6))
        assert report.exit_code == 0

    @pytest.mark.parametrize("single", [True, False])
    def test_failure_is_isolated(self, single):
        """One failing page does not stop the others."""
        pages = ["page1", "bad2", "page3", "crash4", "page5"]
        report = BatchScheduler(workers=3, single=single, show_progress=False).run(pages, _process)

        assert [o.source_path for o in report.succeeded] == ["page1", "page3", "page5"]
        failed = {o.source_path: o.error_kind for o in report.failed}
        assert failed == {"bad2": "IoError", "crash4": "RuntimeError"}
        assert report.exit_code == 1

    def test_single_runs_on_calling_thread(self):
        """Sequential mode never leaves the calling thread."""
        threads = set()

        def record_thread(page):
            threads.add(threading.get_ident())
            return PageResult(source_path=page)

        BatchScheduler(workers=8, single=True, show_progress=False).run(["a", "b", "c"], record_thread)
        assert threads == {threading.get_ident()}

    def test_duplicate_pages_run_once(self):
        """A page listed twice is processed once."""
        calls = []

        def count(page):
            calls.append(page)
            return PageResult(source_path=page)

        report = BatchScheduler(single=True, show_progress=False).run(["a", "b", "a"], count)
        assert calls == ["a", "b"]
        assert len(report.outcomes) == 2

    def test_worker_count(self):
        """Worker count defaults to at least one and is forced to one by single."""
        assert BatchScheduler(workers=5).workers == 5
        assert BatchScheduler(workers=5, single=True).workers == 1
        assert BatchScheduler().workers >= 1


class TestBatchReport:
    """Tests for the batch report."""

    def test_incomplete_report_fails(self):
        """A page that never reported counts against the exit code."""
        report = BatchReport(pages=["a", "b"])
        report.record(PageOutcome("a", ok=True, result=PageResult("a")))
        assert report.exit_code == 1

    def test_summary(self):
        """The summary names every failed page and its error kind."""
        report = BatchReport(pages=["a", "b"])
        report.record(PageOutcome("a", ok=True, result=PageResult("a", warnings=["w"])))
        report.record(PageOutcome("b", ok=False, error_kind="SchemaMismatchError", message="2 vs 3"))

        lines = report.summary_lines()
        assert lines[0] == "1 succeeded, 1 failed, 2 total"
        assert any("1 layout warning" in line for line in lines)
        assert any("b: SchemaMismatchError: 2 vs 3" in line for line in lines)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
