"""
In-memory login throttle keyed by username.

State is process-local and lost on restart. ``cleanup`` is run periodically
by the APScheduler job registered in ``start_sweeper``.
"""
import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from utils import utc_now

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(hours=24)
SWEEP_JOB_ID = "login_limiter_cleanup"


class ReadWriteLock:
    """Many concurrent readers, one exclusive writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class LoginAttempt:
    count: int
    last_try: datetime
    lock_until: Optional[datetime] = None


class LoginLimiter:

    def __init__(self, max_attempts: int = 5, lock_duration: timedelta = timedelta(minutes=15),
                 clock: Callable[[], datetime] = utc_now):
        self.max_attempts = max_attempts
        self.lock_duration = lock_duration
        self._clock = clock
        self._attempts: Dict[str, LoginAttempt] = {}
        self._lock = ReadWriteLock()

    def __len__(self):
        with self._lock.read():
            return len(self._attempts)

    def record_failure(self, username: str) -> Tuple[bool, int]:
        """Count a failed login. Returns (locked, lock_minutes)."""
        now = self._clock()
        with self._lock.write():
            attempt = self._attempts.get(username)
            if attempt is None:
                attempt = LoginAttempt(count=0, last_try=now)
                self._attempts[username] = attempt
            attempt.count += 1
            attempt.last_try = now
            if attempt.count >= self.max_attempts:
                attempt.lock_until = now + self.lock_duration
                logger.warning("Login locked for %s after %d failures", username, attempt.count)
                return True, int(self.lock_duration.total_seconds() // 60)
        return False, 0

    def is_locked(self, username: str) -> Tuple[bool, int]:
        """Returns (locked, remaining_minutes rounded up)."""
        now = self._clock()
        with self._lock.read():
            attempt = self._attempts.get(username)
            if attempt is None or attempt.lock_until is None or now >= attempt.lock_until:
                return False, 0
            remaining = (attempt.lock_until - now).total_seconds() / 60
            return True, int(math.floor(remaining)) + 1

    def reset_attempts(self, username: str):
        with self._lock.write():
            self._attempts.pop(username, None)

    def remaining_attempts(self, username: str) -> int:
        with self._lock.read():
            attempt = self._attempts.get(username)
            if attempt is None:
                return self.max_attempts
            return max(self.max_attempts - attempt.count, 0)

    def cleanup(self) -> int:
        """Evict entries whose lock expired and whose last try is over 24h old."""
        now = self._clock()
        with self._lock.write():
            stale = [
                username for username, attempt in self._attempts.items()
                if (attempt.lock_until is None or now > attempt.lock_until)
                and now - attempt.last_try > STALE_AFTER
            ]
            for username in stale:
                del self._attempts[username]
        if stale:
            logger.info("Login limiter evicted %d stale entries", len(stale))
        return len(stale)


def start_sweeper(limiter: LoginLimiter, scheduler, interval_minutes: int = 60):
    """Register the periodic cleanup on an APScheduler scheduler."""
    scheduler.add_job(
        limiter.cleanup,
        'interval',
        minutes=interval_minutes,
        id=SWEEP_JOB_ID,
        replace_existing=True,
    )
    logger.info("Login limiter sweep scheduled every %d minutes", interval_minutes)
