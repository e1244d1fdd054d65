"""
Background timer for the renewal engine.

Runs one renewal cycle per interval on a daemon thread inside an app context.
Cycles are single-flight: a tick that fires while a cycle is still running is
skipped, never run in parallel.
"""
import logging
import threading

from models import db
from utils.renewal import run_renewal_cycle

logger = logging.getLogger(__name__)


class RenewalScheduler:
    def __init__(self, app=None):
        self.app = None
        self.interval_seconds = 24 * 3600
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        hours = float(app.config.get("RENEWAL_INTERVAL_HOURS", 24))
        self.interval_seconds = max(hours * 3600, 1.0)
        app.extensions["renewal_scheduler"] = self

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the timer thread; the first cycle runs immediately."""
        if self.app is None:
            raise RuntimeError("Renewal scheduler not initialized. Call init_app() first.")
        if self.running:
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="renewal-scheduler", daemon=True)
        self._thread.start()
        logger.info("Renewal scheduler started (every %.0f seconds)", self.interval_seconds)
        return True

    def stop(self, timeout=None):
        """Stop after the in-flight cycle, if any, reaches its natural end."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _loop(self):
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def run_once(self, now=None):
        """
        Run a single cycle unless one is already in progress.
        Returns the cycle summary, or None when skipped or aborted.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Previous renewal cycle still running; skipping this tick")
            return None
        try:
            with self.app.app_context():
                try:
                    return run_renewal_cycle(now=now)
                except Exception:
                    db.session.rollback()
                    logger.exception("Renewal cycle aborted; will retry at the next interval")
                    return None
        finally:
            self._cycle_lock.release()


renewal_scheduler = RenewalScheduler()
