"""Account lockout guard.

Counts failed authentication attempts per identifier (a normalized email)
and locks the identifier for ``lockout_minutes`` once ``max_attempts``
consecutive failures have been recorded.  The guard only gates the login
entry point; tokens that were already issued are unaffected.

COUNTING UNDER CONCURRENCY
--------------------------
A read-then-write counter loses increments when two failed logins for
the same email land together: both read 4, both write 5.  An attacker
running parallel guesses would get more than ``max_attempts`` tries.  So
the increment is a single store operation (``record_failure``): an
``INSERT ... ON CONFLICT DO UPDATE`` in SQL, and one step under the
store lock in memory.  The same statement restarts the count at 1 when
the previous lock has lapsed and stamps ``locked_until`` when the
threshold is reached.

``record_failed_attempt`` returns True only for the failure that reached
the threshold, so a burst of failures produces one lock event in the
logs and in ``account_lockouts_total``.

LIFECYCLE
---------
  check_lockout          locked?  A lapsed lock is reset here.
  record_failed_attempt  +1, lock at the threshold.
  clear_attempts         after a successful login.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from tenancy.core.clock import Clock, utcnow
from tenancy.core.metrics import ACCOUNT_LOCKOUTS
from tenancy.models.lockout import LockoutStatus
from tenancy.models.user import normalize_email
from tenancy.repos.store import Store

logger = logging.getLogger(__name__)


class LockoutGuard:
    def __init__(
        self,
        store: Store,
        *,
        max_attempts: int = 5,
        lockout_minutes: int = 15,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._lock_for = timedelta(minutes=lockout_minutes)
        self._clock = clock

    async def check_lockout(self, identifier: str) -> LockoutStatus:
        """Current state for ``identifier``.  A lapsed lock is cleared here."""
        identifier = normalize_email(identifier)
        now = self._clock()
        async with self._store.transaction() as uow:
            record = await uow.lockouts.get(identifier)
            if record is None:
                return LockoutStatus(is_locked=False, attempts=0)

            if record.locked_until is not None:
                if record.locked_until > now:
                    return LockoutStatus(
                        is_locked=True,
                        attempts=record.failed_attempts,
                        locked_until=record.locked_until,
                    )
                await uow.lockouts.reset(identifier, now=now)
                logger.info("Lockout expired identifier=%s", identifier)
                return LockoutStatus(is_locked=False, attempts=0)

            return LockoutStatus(is_locked=False, attempts=record.failed_attempts)

    async def record_failed_attempt(self, identifier: str) -> bool:
        """Count one failure.  Returns True when this failure locked the identifier."""
        identifier = normalize_email(identifier)
        now = self._clock()
        async with self._store.transaction() as uow:
            record = await uow.lockouts.record_failure(
                identifier,
                now=now,
                max_attempts=self._max_attempts,
                lock_until=now + self._lock_for,
            )

        # Only the failure that reaches the threshold reports the lock; later
        # failures inside the window just keep counting.
        locked = (
            record.failed_attempts == self._max_attempts
            and record.locked_until is not None
            and record.locked_until > now
        )
        if locked:
            ACCOUNT_LOCKOUTS.inc()
            logger.warning(
                "Account locked identifier=%s attempts=%d until=%s",
                identifier,
                record.failed_attempts,
                record.locked_until.isoformat(),  # type: ignore[union-attr]
            )
        else:
            logger.info(
                "Failed attempt identifier=%s attempts=%d/%d",
                identifier,
                record.failed_attempts,
                self._max_attempts,
            )
        return locked

    async def clear_attempts(self, identifier: str) -> None:
        identifier = normalize_email(identifier)
        async with self._store.transaction() as uow:
            await uow.lockouts.reset(identifier, now=self._clock())
