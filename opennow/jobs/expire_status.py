"""Periodic job demoting stale OPEN/CLOSED reports to UNCERTAIN."""

import argparse
import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from opennow.core import status
from opennow.core.config import get_settings

logger = logging.getLogger(__name__)


class StatusExpiryTask:
    """Owns the sweep thread. ``run_once`` is the manual trigger."""

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        max_age: Optional[timedelta] = None,
        sweep: Callable[..., int] = status.expire_stale_statuses,
    ) -> None:
        settings = get_settings()
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.expiry_interval_seconds
        self.max_age = max_age if max_age is not None else timedelta(minutes=settings.stale_after_minutes)
        self._sweep = sweep
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[int]:
        """Run a single sweep. Failures are logged and left for the next tick."""
        try:
            return self._sweep(max_age=self.max_age)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Auto-expire failed: %s", exc)
            return None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="status-expiry", daemon=True)
        self._thread.start()
        logger.info("Status expiry task started: interval=%ss max_age=%s", self.interval_seconds, self.max_age)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the thread exits or ``timeout`` passes. True once stopped."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return not self.running

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Status expiry task stopped")


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Expire stale shop statuses")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument(
        "--interval",
        dest="interval_seconds",
        type=float,
        default=settings.expiry_interval_seconds,
        help="Seconds between sweeps",
    )
    parser.add_argument(
        "--stale-minutes",
        dest="stale_minutes",
        type=int,
        default=settings.stale_after_minutes,
        help="Age after which OPEN/CLOSED reports become UNCERTAIN",
    )
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args()
    max_age = timedelta(minutes=args.stale_minutes)

    if args.once:
        changed = status.expire_stale_statuses(max_age=max_age)
        logger.info("Sweep complete: modified=%d", changed)
        return

    task = StatusExpiryTask(interval_seconds=args.interval_seconds, max_age=max_age)
    task.start()
    try:
        while not task.wait(1.0):
            pass
    except KeyboardInterrupt:
        task.stop()


if __name__ == "__main__":
    main()
