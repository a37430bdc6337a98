"""Commit schedules and the background job that runs one development cycle per tick."""

import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from git_agent.core.workflow import Orchestrator
from git_agent.db.models import CYCLE_ALREADY_COMPLETED, CYCLE_COMMITTED, CYCLE_COMPLETED, CycleResult, Phase
from git_agent.errors import CycleInProgress, ValidationError

logger = logging.getLogger(__name__)

JOB_NAME = "dailyDevelopment"
DEVELOPMENT_INTERVAL = 60.0
PRODUCTION_WINDOW = (9, 21)  # UTC hours, end exclusive


@dataclass
class Schedule:
    mode: str
    description: str
    interval_seconds: float | None = None
    hour: int | None = None
    minute: int | None = None

    def validate(self):
        if self.interval_seconds is not None:
            if self.interval_seconds <= 0:
                raise ValidationError("Schedule interval must be positive")
            return
        if self.hour is None or self.minute is None:
            raise ValidationError(f"Invalid {self.mode} schedule: no interval or time of day")
        if not (0 <= self.hour < 24 and 0 <= self.minute < 60):
            raise ValidationError(f"Invalid time of day {self.hour:02d}:{self.minute:02d}")

    def next_delay(self, now: datetime) -> float:
        """Seconds from ``now`` until the next run."""
        if self.interval_seconds is not None:
            return self.interval_seconds
        target = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    def to_dict(self) -> dict:
        data = {"mode": self.mode, "description": self.description}
        if self.interval_seconds is not None:
            data["intervalSeconds"] = self.interval_seconds
        else:
            data["timeOfDay"] = f"{self.hour:02d}:{self.minute:02d} UTC"
        return data


def get_schedule(mode: str | None, interval_override: float | None = None, rng=random) -> Schedule:
    """Build the schedule for a commit mode. ``test`` is an alias for development."""
    mode = (mode or "development").strip().lower()
    if mode == "test":
        mode = "development"

    if mode == "production":
        start, end = PRODUCTION_WINDOW
        hour = rng.randrange(start, end)
        minute = rng.randrange(60)
        return Schedule(
            mode="production",
            description=f"Commit daily at a random time between {start:02d}:00 and {end:02d}:00 UTC",
            hour=hour,
            minute=minute,
        )

    if mode != "development":
        logger.warning("Unknown commit mode %r, using development", mode)

    interval = interval_override or DEVELOPMENT_INTERVAL
    return Schedule(
        mode="development",
        description=f"Commit every {interval:g} seconds",
        interval_seconds=interval,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """Background thread that runs the development cycle on a schedule.

    There is one job. Ticks run inline on the job thread, so a slow cycle delays
    the next tick instead of overlapping it.
    """

    def __init__(self, orchestrator: Orchestrator, schedule: Schedule, grace_period: float = 1.0):
        schedule.validate()
        self.orchestrator = orchestrator
        self.schedule = schedule
        self.grace_period = grace_period
        self.last_result: dict | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._next_run_at: datetime | None = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive() and not self._stop_event.is_set())

    def start(self) -> bool:
        """Start the job thread. Returns False if it was already running."""
        if self.running:
            logger.info("Scheduler is already running")
            return False
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), name=JOB_NAME, daemon=True
        )
        self._thread.start()
        logger.info("Scheduler started in %s mode: %s", self.schedule.mode, self.schedule.description)
        return True

    def stop(self):
        """Stop the job thread. Safe to call from inside a tick."""
        self._stop_event.set()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=10)
        self._next_run_at = None
        logger.info("Scheduler stopped")

    def restart(self):
        self.stop()
        time.sleep(self.grace_period)
        self.start()

    def status(self) -> dict:
        running = self.running
        return {
            "running": running,
            "active_jobs": [JOB_NAME] if running else [],
            "schedule": self.schedule.to_dict(),
            "next_run_at": self._next_run_at.isoformat() if running and self._next_run_at else None,
            "last_result": self.last_result,
        }

    def _run(self, stop_event: threading.Event):
        while not stop_event.is_set():
            now = _now()
            delay = self.schedule.next_delay(now)
            self._next_run_at = now + timedelta(seconds=delay)
            if stop_event.wait(delay):
                break
            try:
                self.tick()
            except Exception:
                logger.exception("Error in scheduled development cycle")

    def tick(self) -> CycleResult | None:
        """One scheduled step. Stops the scheduler once there is nothing left to do."""
        state = self.orchestrator.state()
        if state.phase == Phase.COMPLETED:
            logger.info("Project completed, stopping scheduler")
            self.stop()
            return None

        try:
            idle = state.phase == Phase.UNINITIALIZED or state.remaining_tasks == 0
            if idle and not self.orchestrator.recover_queue():
                logger.info("No tasks available, stopping scheduler")
                self.stop()
                return None
            result = self.orchestrator.run_development_cycle()
        except CycleInProgress:
            logger.info("A cycle is already running, skipping this tick")
            return None

        self.last_result = {**result.to_dict(), "at": _now().isoformat()}
        if result.status == CYCLE_COMPLETED:
            logger.info("Project completed, stopping scheduler")
            self.stop()
        return result

    def trigger_manual_cycle(self) -> CycleResult:
        """Run one cycle now. A committed cycle starts the scheduler if it is stopped."""
        if self.orchestrator.state().phase == Phase.COMPLETED:
            logger.info("Project already completed")
            return CycleResult(status=CYCLE_ALREADY_COMPLETED)

        result = self.orchestrator.run_development_cycle()
        self.last_result = {**result.to_dict(), "at": _now().isoformat()}
        if (
            result.status == CYCLE_COMMITTED
            and self.orchestrator.state().phase != Phase.COMPLETED
            and not self.running
        ):
            logger.info("Scheduler not running, starting it")
            self.start()
        return result
