"""
Attendance eligibility module.

Decides whether a matched identity may have a new attendance event
recorded, based on:
- Cooldown (minimum time since the identity's last event)
- Daily uniqueness (one event per identity per local calendar day)
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from ..logging_config import get_logger
from ..store import AttendanceStore

logger = get_logger(__name__)


class DenialReason(Enum):
    COOLDOWN_ACTIVE = 'CooldownActive'
    ALREADY_MARKED_TODAY = 'AlreadyMarkedToday'


@dataclass(frozen=True)
class Eligibility:
    """Result of an eligibility check: allowed, or denied with a reason."""

    allowed: bool
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls) -> 'Eligibility':
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason) -> 'Eligibility':
        return cls(allowed=False, reason=reason)


class EligibilityGate:
    """
    Cooldown and daily-uniqueness gate for attendance events.

    The in-memory `last recorded` cache is only a fast path; the daily
    rule and the persisted cooldown are always re-derived from the store,
    so decisions survive restarts and are shared by sessions using the
    same store.
    """

    def __init__(self, store: AttendanceStore, cooldown_seconds: float = 10.0):
        """
        Initialize eligibility gate.

        Args:
            store: Authoritative attendance store
            cooldown_seconds: Minimum time between two events of one identity
        """
        self.store = store
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self._last_recorded: Dict[int, datetime] = {}
        self._lock = threading.Lock()

    def check_eligibility(self, identity_id: int, now: datetime) -> Eligibility:
        """
        Check if an identity may be recorded at `now`.

        Args:
            identity_id: Matched identity id
            now: Current local time

        Returns:
            Eligibility.allow() or Eligibility.deny(reason)

        Raises:
            PersistenceFailure: If the store cannot be queried
        """
        with self._lock:
            cached = self._last_recorded.get(identity_id)

        if cached is not None and self._within_cooldown(cached, now):
            return Eligibility.deny(DenialReason.COOLDOWN_ACTIVE)

        latest = self.store.latest_attendance_event(identity_id)
        if latest is not None and self._within_cooldown(latest.timestamp, now):
            return Eligibility.deny(DenialReason.COOLDOWN_ACTIVE)

        if self.store.has_attendance_event_on_date(identity_id, now.date()):
            return Eligibility.deny(DenialReason.ALREADY_MARKED_TODAY)

        return Eligibility.allow()

    def mark_recorded(self, identity_id: int, at: datetime) -> None:
        """
        Remember that an event was persisted for an identity.

        Must only be called after the store accepted the event.
        """
        with self._lock:
            self._last_recorded[identity_id] = at
        logger.debug(f'Cooldown started for identity {identity_id} at {at:%H:%M:%S}')

    def last_recorded_at(self, identity_id: int) -> Optional[datetime]:
        with self._lock:
            return self._last_recorded.get(identity_id)

    def forget(self, identity_id: int) -> None:
        with self._lock:
            self._last_recorded.pop(identity_id, None)

    def reset(self) -> None:
        with self._lock:
            self._last_recorded.clear()

    def _within_cooldown(self, last: datetime, now: datetime) -> bool:
        # A record in the future (clock skew) also counts as recent
        return now - last < self.cooldown


def describe_denial(reason: DenialReason, cooldown_seconds: float) -> str:
    """Operator-facing text for a denial reason."""
    if reason is DenialReason.COOLDOWN_ACTIVE:
        return f'Cooldown active ({cooldown_seconds:g}s)'
    return 'Already marked today'
