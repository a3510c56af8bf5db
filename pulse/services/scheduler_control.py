"""Start/stop/status control around the periodic sweeps."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pulse.domain.models import SchedulerStatus

logger = logging.getLogger(__name__)


class SchedulerControl:
    """Owns the background scheduler that drives the sweeps.

    Every sweep becomes one interval job with ``max_instances=1`` and
    ``coalesce=True``: a sweep that outlasts the interval delays the next run
    instead of overlapping it. Run state lives in this object only, so a new
    process always starts stopped.
    """

    def __init__(self, sweeps: dict[str, Callable[[], object]], interval_seconds: float) -> None:
        self._sweeps = dict(sweeps)
        self._interval = interval_seconds
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        """Install a fresh scheduler, replacing any running one."""
        with self._lock:
            if self._scheduler is not None:
                self._shutdown()

            scheduler = BackgroundScheduler(timezone="UTC")
            for job_id, sweep in self._sweeps.items():
                scheduler.add_job(
                    sweep,
                    trigger=IntervalTrigger(seconds=self._interval),
                    id=job_id,
                    name=job_id.replace("_", " "),
                    max_instances=1,
                    coalesce=True,
                    replace_existing=True,
                )
            scheduler.start()
            self._scheduler = scheduler

        logger.info(
            f"Scheduler started: {len(self._sweeps)} job(s) every {self._interval:g}s"
        )

    def stop(self) -> None:
        """Cancel future ticks. A sweep already running is allowed to finish."""
        with self._lock:
            if self._scheduler is None:
                return
            self._shutdown()
        logger.info("Scheduler stopped")

    def status(self) -> SchedulerStatus:
        return SchedulerStatus.RUNNING if self._scheduler is not None else SchedulerStatus.STOPPED

    @property
    def active_jobs(self) -> list[str]:
        scheduler = self._scheduler
        if scheduler is None:
            return []
        return [job.id for job in scheduler.get_jobs()]

    def _shutdown(self) -> None:
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
