"""
Interval scheduler for the invoice pipeline.

One pipeline run at a time: a trigger that arrives while a run is still
in progress is skipped and reported as busy. The daily summary fires once
per calendar day at the configured HH:MM (local time).
"""

import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from moneybird_agent.config.exception import ConfigurationError
from moneybird_agent.config.logger import setup_logger

logger = setup_logger("PipelineScheduler", "scheduler.log")

BUSY = "busy"


def parse_daily_time(value: str):
    try:
        hours, minutes = (int(part) for part in value.split(":"))
    except ValueError as e:
        raise ConfigurationError(f"DAILY_SUMMARY_TIME must be HH:MM, got {value!r}") from e
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ConfigurationError(f"DAILY_SUMMARY_TIME out of range: {value!r}")
    return hours, minutes


class PipelineScheduler:
    """
    Runs ``run_once`` every ``interval_minutes`` in a background thread.

    Args:
        run_once: Callable that processes one invoice and returns a summary.
        interval_minutes: Minutes between triggers.
        daily_summary: Optional callable fired once a day.
        daily_summary_time: "HH:MM" at which the daily summary fires.
    """

    def __init__(
        self,
        run_once: Callable[[], Any],
        interval_minutes: int = 60,
        daily_summary: Optional[Callable[[], Any]] = None,
        daily_summary_time: str = "18:00",
        clock: Callable[[], datetime] = datetime.now,
    ):
        if interval_minutes <= 0:
            raise ConfigurationError("RUN_INTERVAL_MINUTES must be positive")
        self.run_once = run_once
        self.interval_seconds = interval_minutes * 60
        self.daily_summary = daily_summary
        self.summary_hour, self.summary_minute = parse_daily_time(daily_summary_time)
        self.clock = clock

        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._next_run = 0.0
        self._last_summary_date: Optional[str] = None
        self.last_result: Optional[Dict[str, Any]] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    def trigger(self) -> Any:
        """Run the pipeline now unless a run is already in progress."""
        if not self._run_lock.acquire(blocking=False):
            logger.info("Pipeline run already in progress, trigger skipped")
            return BUSY
        try:
            logger.info("Pipeline run started")
            result = self.run_once()
            self.last_result = result
            return result
        except Exception as e:
            logger.error(f"Pipeline run failed: {e}")
            self.last_result = {"status": "error", "errors": [str(e)]}
            return self.last_result
        finally:
            self._run_lock.release()

    def check_daily_summary(self) -> bool:
        """Fire the daily summary if its time has passed and it has not fired today."""
        if self.daily_summary is None:
            return False
        now = self.clock()
        today = now.date().isoformat()
        due = (now.hour, now.minute) >= (self.summary_hour, self.summary_minute)
        if not due or self._last_summary_date == today:
            return False

        self._last_summary_date = today
        try:
            self.daily_summary()
            logger.info(f"Daily summary sent for {today}")
        except Exception as e:
            logger.error(f"Daily summary failed: {e}")
        return True

    def tick(self):
        if time.monotonic() >= self._next_run:
            self._next_run = time.monotonic() + self.interval_seconds
            self.trigger()
        self.check_daily_summary()

    def _loop(self):
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(1.0)

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._next_run = 0.0
        self._thread = threading.Thread(target=self._loop, name="pipeline-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            f"Scheduler started (every {self.interval_seconds // 60} min, "
            f"daily summary at {self.summary_hour:02d}:{self.summary_minute:02d})"
        )

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def serve_forever(self):
        """Blocking loop for the CLI; returns on KeyboardInterrupt."""
        self.start()
        try:
            while self.running:
                self._thread.join(1.0)
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.stop()
