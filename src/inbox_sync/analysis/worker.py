"""Consumer draining the analysis queue filled by sync runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..core.errors import PersistenceError
from ..core.interfaces import AnalysisJobStore, AnalysisProcessor

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerReport:
    """Outcome of one worker pass."""

    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0


class AnalysisWorker:
    """Claim queued analysis jobs and hand them to a processor."""

    def __init__(
        self,
        store: AnalysisJobStore,
        processor: AnalysisProcessor,
        *,
        max_attempts: int = 3,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self._store = store
        self._processor = processor
        self._max_attempts = max_attempts

    def run_once(self, limit: int = 10) -> WorkerReport:
        """Process up to ``limit`` jobs and return counters."""
        report = WorkerReport()
        jobs = self._store.claim_analysis_jobs(limit)
        report.claimed = len(jobs)

        for job in jobs:
            try:
                self._processor.process(job.context)
            except Exception as exc:  # pylint: disable=broad-except
                final = job.attempts + 1 >= self._max_attempts
                LOGGER.warning(
                    "Analysis of email %s failed (attempt %s/%s): %s",
                    job.context.email_id,
                    job.attempts + 1,
                    self._max_attempts,
                    exc,
                )
                try:
                    self._store.fail_analysis_job(job, str(exc), final=final)
                except PersistenceError:
                    LOGGER.error("Could not record failure for job %s", job.id)
                    continue
                if final:
                    report.failed += 1
                else:
                    report.retried += 1
                continue

            try:
                self._store.complete_analysis_job(job)
            except PersistenceError:
                LOGGER.error("Could not mark job %s complete", job.id)
                continue
            report.completed += 1

        if jobs:
            LOGGER.info(
                "Analysis pass: claimed=%s completed=%s retried=%s failed=%s",
                report.claimed,
                report.completed,
                report.retried,
                report.failed,
            )
        return report


__all__ = ["AnalysisWorker", "WorkerReport"]
