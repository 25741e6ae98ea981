"""
Process-wide owner of the background sync threads.

Every task is registered under (repository public_id, role) so the
same repository can never get two live tasks of the same kind, and
all tasks are joined on shutdown. A bounded semaphore caps how many
fetch passes hit GitHub at once.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from app.services.sync_state import TaskRole

logger = logging.getLogger(__name__)

# How often a blocked slot acquisition re-checks the stop event
_SLOT_POLL_SECONDS = 0.5


class TaskSupervisor:
    """Owns, caps and joins the per-repository sync threads."""

    def __init__(self, max_active_passes: int = 4):
        self.stop_event = threading.Event()
        self._lock = threading.Lock()
        self._tasks: dict[tuple[str, TaskRole], threading.Thread] = {}
        self._pass_slots = threading.BoundedSemaphore(max(1, max_active_passes))

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def spawn(self, public_id: str, role: TaskRole, target: Callable[[], object]) -> bool:
        """
        Start `target` in a new thread owned by (public_id, role).

        Returns False (and starts nothing) if such a task is already
        alive or the supervisor is shutting down.
        """
        key = (public_id, role)
        with self._lock:
            if self.stop_event.is_set():
                logger.info("Supervisor stopping, not starting %s task for %s", role.value, public_id)
                return False

            existing = self._tasks.get(key)
            if existing is not None and existing.is_alive():
                logger.info("%s task for %s already running", role.value, public_id)
                return False

            thread = threading.Thread(
                target=self._run,
                args=(key, target),
                name=f"{role.value}-{public_id[:8]}",
                daemon=True,
            )
            self._tasks[key] = thread
            thread.start()
            return True

    def _run(self, key: tuple[str, TaskRole], target: Callable[[], object]) -> None:
        public_id, role = key
        try:
            target()
        except Exception:
            # A crashed task must not take the process down
            logger.exception("%s task for %s crashed", role.value, public_id)
        finally:
            with self._lock:
                if self._tasks.get(key) is threading.current_thread():
                    del self._tasks[key]

    def is_running(self, public_id: str, role: TaskRole) -> bool:
        with self._lock:
            thread = self._tasks.get((public_id, role))
            return thread is not None and thread.is_alive()

    def running_roles(self, public_id: str) -> list[TaskRole]:
        with self._lock:
            return [
                role for (pid, role), thread in self._tasks.items()
                if pid == public_id and thread.is_alive()
            ]

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for thread in self._tasks.values() if thread.is_alive())

    @contextmanager
    def pass_slot(self) -> Iterator[bool]:
        """
        Hold one of the limited fetch-pass slots.

        Yields False without a slot if the stop event fires while waiting.
        """
        acquired = False
        while not self.stop_event.is_set():
            if self._pass_slots.acquire(timeout=_SLOT_POLL_SECONDS):
                acquired = True
                break
        try:
            yield acquired
        finally:
            if acquired:
                self._pass_slots.release()

    def shutdown(self, timeout: float = 10.0) -> bool:
        """
        Signal every task to stop and join them.

        Returns True if all threads exited within the timeout.
        """
        self.stop_event.set()
        with self._lock:
            threads = list(self._tasks.values())

        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join(timeout)

        alive = [t.name for t in threads if t.is_alive() and t is not current]
        if alive:
            logger.warning("Sync tasks still running after shutdown timeout: %s", ", ".join(alive))
            return False
        return True
