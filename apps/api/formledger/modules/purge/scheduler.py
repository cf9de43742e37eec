from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from formledger.core.errors import PurgeAlreadyRunning
from formledger.core.observability import emit

from .service import WipPurgeEngine


def parse_run_at(raw: str) -> Tuple[int, int]:
    """'HH:MM' (UTC) -> (hour, minute)."""
    try:
        hh, mm = raw.strip().split(":", 1)
        hour, minute = int(hh), int(mm)
    except (AttributeError, ValueError) as e:
        raise ValueError(f"PURGE_RUN_AT must be HH:MM, got {raw!r}") from e
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"PURGE_RUN_AT out of range: {raw!r}")
    return hour, minute


class PurgeScheduler:
    """
    Timer thread that calls WipPurgeEngine.run() once per day at run_at (UTC),
    or every interval_seconds when set. trigger_now() runs the same engine
    synchronously for operators; the engine serializes both paths.
    """

    def __init__(
        self,
        engine: WipPurgeEngine,
        *,
        run_at: str = "00:00",
        interval_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.engine = engine
        self.run_at = parse_run_at(run_at)
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_summary: Optional[Dict[str, Any]] = None
        self.next_run_at: Optional[datetime] = None

    def next_delay(self, now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        if self.interval_seconds:
            return float(self.interval_seconds)
        hour, minute = self.run_at
        target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="wip-purge-scheduler", daemon=True)
        self._thread.start()
        emit("info", "purge.scheduler.start", "purge scheduler started", module=__name__)

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        # also interrupts an in-flight run between order groups
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        emit("info", "purge.scheduler.stop", "purge scheduler stopped", module=__name__)

    def _loop(self) -> None:
        while not self._stop.is_set():
            delay = self.next_delay()
            self.next_run_at = self._clock() + timedelta(seconds=delay)
            if self._stop.wait(delay):
                break
            self.tick()

    def tick(self) -> Optional[Dict[str, Any]]:
        """One scheduled trigger. Never raises; failures are logged."""
        try:
            self.last_summary = self.engine.run(trigger="scheduled", stop_event=self._stop)
            return self.last_summary
        except PurgeAlreadyRunning as e:
            emit("warning", "purge.run.skipped", e.message, module=__name__)
        except Exception as e:
            emit("error", "purge.run.failed", str(e), module=__name__, error=type(e).__name__)
        return None

    def trigger_now(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        summary = self.engine.run(trigger="manual", stop_event=self._stop, request_id=request_id)
        self.last_summary = summary
        return summary

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok" if self.is_running else "stopped",
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run": {
                "purge_id": self.last_summary["purge_id"],
                "status": self.last_summary["status"],
            }
            if self.last_summary
            else None,
        }
