"""
auth/governor.py -- Login attempt governor (per-address lockout).

Policy:
  After `max_attempts` consecutive failed logins from one client address, that
  address is refused until `window` seconds have passed since its last attempt.
  A successful login clears the address. Once the window has elapsed, old
  failures no longer count -- the next failure starts again from one.

  Keyed on network address, not username. This blocks one source guessing one
  account or many accounts. It does not stop many sources guessing one
  account; that gap is accepted for this deployment size.

Fail closed:
  If the store raises or hands back a record that makes no sense, the address
  is refused for a full window. A broken limiter must not become an open door.

The governor owns no state of its own. The AttemptStore is injected so the
process-local table can be swapped for a shared database (auth/attempts.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from auth.attempts import AttemptStore
from auth.models import AttemptRecord, GovernorDecision

logger = logging.getLogger("connect.auth")


class LoginAttemptGovernor:
    """Decide whether a client address may attempt a login.

    Usage:
        governor = LoginAttemptGovernor(InMemoryAttemptStore(), max_attempts=5, window=900)
        decision = governor.check_allowed("203.0.113.7")
        if not decision.allowed:
            ...  # 429, Retry-After: decision.retry_after
        governor.record_attempt("203.0.113.7", succeeded=False)

    The login route uses reserve() instead of check_allowed() so the check
    and the count happen together; see reserve().
    """

    def __init__(
        self,
        store: AttemptStore,
        max_attempts: int = 5,
        window: float = 15 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.store = store
        self.max_attempts = max_attempts
        self.window = float(window)
        self._clock = clock

    def check_allowed(self, address: str, now: float | None = None) -> GovernorDecision:
        """Return allow, or reject with the seconds left until the window ends."""
        now = self._clock() if now is None else now
        try:
            record = self.store.get(address)
        except Exception:
            logger.exception("Attempt store read failed for %s -- refusing login", address)
            return GovernorDecision(allowed=False, retry_after=self.window)

        if record is None:
            return GovernorDecision(allowed=True)
        if not _is_sane(record):
            logger.error("Malformed attempt record for %s (%r) -- refusing login", address, record)
            return GovernorDecision(allowed=False, retry_after=self.window)

        # A last_attempt in the future (clock step between instances) counts as "just now".
        elapsed = max(0.0, now - record.last_attempt)
        if elapsed >= self.window:
            return GovernorDecision(allowed=True)
        if record.count >= self.max_attempts:
            return GovernorDecision(allowed=False, retry_after=self.window - elapsed)
        return GovernorDecision(allowed=True)

    def reserve(self, address: str, now: float | None = None) -> GovernorDecision:
        """Check the address and count this attempt in one atomic step.

        The login handler calls this before bcrypt. Counting up front means
        parallel requests cannot all pass the check while the first one is
        still hashing: at most `max_attempts` are ever admitted per window.
        A successful login then clears the address with record_attempt().
        """
        now = self._clock() if now is None else now
        try:
            admitted, record = self.store.reserve(address, now, self.window, self.max_attempts)
        except Exception:
            logger.exception("Attempt store reserve failed for %s -- refusing login", address)
            return GovernorDecision(allowed=False, retry_after=self.window)

        if not _is_sane(record):
            logger.error("Malformed attempt record for %s (%r) -- refusing login", address, record)
            return GovernorDecision(allowed=False, retry_after=self.window)
        if admitted:
            if record.count == self.max_attempts:
                logger.warning("Address %s has used all %d login attempts", address, self.max_attempts)
            return GovernorDecision(allowed=True)

        elapsed = max(0.0, now - record.last_attempt)
        return GovernorDecision(allowed=False, retry_after=max(self.window - elapsed, 0.0))

    def record_attempt(self, address: str, succeeded: bool, now: float | None = None) -> None:
        """Clear the address on success; count one more failure otherwise.

        Store errors propagate. The login handler has already answered the
        credential check, but a lost failure would weaken the lockout, so the
        request fails loudly instead.
        """
        if succeeded:
            self.store.reset(address)
            return
        now = self._clock() if now is None else now
        record = self.store.increment(address, now, self.window)
        if record.count == self.max_attempts:
            logger.warning(
                "Locking out %s for %ds after %d failed logins",
                address,
                int(self.window),
                record.count,
            )

    def sweep(self, now: float | None = None) -> int:
        """Remove records whose window has fully elapsed. Returns the number removed."""
        now = self._clock() if now is None else now
        removed = self.store.sweep(now - self.window)
        if removed:
            logger.info("Swept %d stale login attempt records", removed)
        return removed


def _is_sane(record: AttemptRecord) -> bool:
    return (
        isinstance(record.count, int)
        and record.count >= 0
        and isinstance(record.last_attempt, (int, float))
        and math.isfinite(record.last_attempt)
    )
