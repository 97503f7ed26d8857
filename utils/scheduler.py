"""
Fixed-interval background tasks with an explicit start/stop lifecycle.

Each task runs on its own daemon thread inside an application context. Runs
of the same task never overlap: a run that starts while the previous one is
still in progress is skipped.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    def __init__(self, name: str, interval_seconds: float, func: Callable[[], object]):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func

        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._app = None
        self.last_result = None
        self.skipped_runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, app=None) -> bool:
        """
        Runs the task now unless a run is already in flight.
        Returns False when the run was skipped.
        """
        if not self._run_lock.acquire(blocking=False):
            self.skipped_runs += 1
            logger.warning("Task %s still running; skipping this run", self.name)
            return False
        try:
            app = app or self._app
            if app is not None:
                with app.app_context():
                    self.last_result = self.func()
            else:
                self.last_result = self.func()
            return True
        finally:
            self._run_lock.release()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                # keep the timer alive; the next tick retries
                logger.exception("Task %s failed", self.name)

    def start(self, app) -> None:
        if self.running:
            return
        self._app = app
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"task-{self.name}", daemon=True)
        self._thread.start()
        logger.info("Started task %s every %ss", self.name, self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Stopped task %s", self.name)


class Scheduler:
    """Holds the app's background tasks."""

    def __init__(self):
        self.tasks = {}

    def add(self, task: ScheduledTask) -> ScheduledTask:
        self.tasks[task.name] = task
        return task

    def start(self, app) -> None:
        for task in self.tasks.values():
            task.start(app)

    def stop(self, timeout: float = 5.0) -> None:
        for task in self.tasks.values():
            task.stop(timeout)
