"""
Batch Scheduling Module

Fans a per-page callable out over a set of pages, isolating failures and
collecting a report keyed by page path.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from tqdm import tqdm

from .errors import PipelineError
from .models import PageResult

logger = logging.getLogger(__name__)


@dataclass
class PageOutcome:
    """Success or failure of one page."""
    source_path: str
    ok: bool
    result: Optional[PageResult] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    elapsed_seconds: float = 0.0


@dataclass
class BatchReport:
    """
    Results of a batch run.

    Appends are lock-protected; the lock is held only for the append itself.
    """
    pages: List[str]
    _outcomes: Dict[str, PageOutcome] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: PageOutcome) -> int:
        """Store an outcome and return how many pages have completed."""
        with self._lock:
            self._outcomes[outcome.source_path] = outcome
            return len(self._outcomes)

    @property
    def outcomes(self) -> List[PageOutcome]:
        """Outcomes in input order, independent of completion order."""
        return [self._outcomes[p] for p in self.pages if p in self._outcomes]

    @property
    def succeeded(self) -> List[PageOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[PageOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def exit_code(self) -> int:
        return 0 if not self.failed and len(self._outcomes) == len(self.pages) else 1

    def summary_lines(self) -> List[str]:
        lines = [f"{len(self.succeeded)} succeeded, {len(self.failed)} failed, {len(self.pages)} total"]
        for outcome in self.outcomes:
            if outcome.ok:
                warnings = len(outcome.result.warnings) if outcome.result else 0
                suffix = f" ({warnings} layout warning(s))" if warnings else ""
                lines.append(f"  OK     {outcome.source_path}{suffix}")
            else:
                lines.append(f"  FAILED {outcome.source_path}: {outcome.error_kind}: {outcome.message}")
        return lines


class BatchScheduler:
    """
    Runs a page pipeline over many pages.

    With a single worker pages run strictly in order on the calling thread;
    otherwise a thread pool processes them concurrently.
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        single: bool = False,
        show_progress: bool = True,
    ):
        self.workers = 1 if single else max(1, workers or os.cpu_count() or 1)
        self.show_progress = show_progress

    def run(self, pages: List[str], process_page: Callable[[str], PageResult]) -> BatchReport:
        """
        Process all pages.

        Args:
            pages: Page paths, in reporting order (duplicates run once)
            process_page: Callable producing a PageResult or raising

        Returns:
            BatchReport keyed by page path
        """
        unique_pages = list(dict.fromkeys(pages))
        if len(unique_pages) != len(pages):
            logger.warning(f"Ignoring {len(pages) - len(unique_pages)} duplicate page(s)")

        report = BatchReport(pages=unique_pages)
        total = len(unique_pages)
        logger.info(f"Processing {total} page(s) with {self.workers} worker(s)")

        with tqdm(total=total, unit="page", disable=not self.show_progress) as progress:
            def on_done(outcome: PageOutcome, completed: int) -> None:
                progress.update()
                status = "done" if outcome.ok else f"failed ({outcome.error_kind})"
                logger.info(f"[{completed}/{total}] {outcome.source_path} {status}")

            if self.workers == 1:
                for page in unique_pages:
                    outcome = self._run_one(page, process_page)
                    on_done(outcome, report.record(outcome))
            else:
                with ThreadPoolExecutor(max_workers=self.workers) as executor:
                    futures = {
                        executor.submit(self._run_one, page, process_page): page
                        for page in unique_pages
                    }
                    for future in as_completed(futures):
                        outcome = future.result()
                        on_done(outcome, report.record(outcome))

        return report

    @staticmethod
    def _run_one(page: str, process_page: Callable[[str], PageResult]) -> PageOutcome:
        start = time.time()
        try:
            result = process_page(page)
        except PipelineError as e:
            logger.error(f"Failed to process {page}: {e.kind}: {e}")
            return PageOutcome(page, ok=False, error_kind=e.kind, message=str(e),
                               elapsed_seconds=time.time() - start)
        except Exception as e:
            logger.exception(f"Unexpected error while processing {page}")
            return PageOutcome(page, ok=False, error_kind=type(e).__name__, message=str(e),
                               elapsed_seconds=time.time() - start)
        return PageOutcome(page, ok=True, result=result, elapsed_seconds=time.time() - start)
