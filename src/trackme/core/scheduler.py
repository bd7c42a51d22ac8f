"""Background deadline sweep."""

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from trackme.core import lifecycle
from trackme.core.projects import list_projects, save_project
from trackme.db.engine import get_db

logger = logging.getLogger(__name__)

ONE_HOUR = 60 * 60
TERMINAL_STATUSES = ("canceled", "completed")


class DeadlineScheduler:
    """Background thread that moves overdue projects to ``outOfDeadline``.

    One sweep runs as soon as the thread starts, then one per ``interval``
    seconds until ``stop()``.
    """

    def __init__(
        self,
        db_path: Path,
        interval: float = ONE_HOUR,
        clock: Callable[[], datetime] = lifecycle.utcnow,
    ):
        self.db_path = db_path
        self.interval = interval
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self):
        """Start the sweep thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="deadline-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Deadline scheduler started (interval=%ss)", self.interval)

    def stop(self):
        """Signal the sweep thread to stop."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
        logger.info("Deadline scheduler stopped")

    def _run(self):
        """Main sweep loop."""
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Error in deadline sweep")
            self._stop_event.wait(self.interval)

    def run_once(self) -> list[str]:
        """Sweep every non-terminal project once. Returns the IDs that changed."""
        now = self.clock()
        updated = []
        with get_db(self.db_path) as db:
            for project in list_projects(db, exclude_statuses=TERMINAL_STATUSES):
                try:
                    old_status = project.status
                    if not lifecycle.refresh_status(project, now):
                        continue
                    save_project(db, project)
                except Exception:
                    logger.exception("Deadline check failed for project %s", project.id)
                    continue
                updated.append(project.id)
                logger.info(
                    "Project %s status %s -> %s", project.id, old_status, project.status
                )
        return updated
