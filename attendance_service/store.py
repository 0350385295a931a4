"""
Attendance store interface.

The store holds enrollment rows and attendance events. The in-memory
implementation backs tests and the `--store memory` mode; the backend
API implementation lives in backend_store.py.
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from .logging_config import get_logger
from .models import AttendanceEvent, EnrollmentRecord, as_feature_vector

logger = get_logger(__name__)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """
    Local-time bounds of a calendar day.

    Returns:
        Tuple (start, end) where start is midnight of `day` (inclusive)
        and end is midnight of the next day (exclusive)
    """
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class AttendanceStore(ABC):
    """
    Abstract store of enrollments and attendance events.

    Implementations raise PersistenceFailure when the underlying
    storage cannot be read or written.
    """

    @abstractmethod
    def list_identities(self) -> List[EnrollmentRecord]:
        """Return every raw enrollment row."""

    @abstractmethod
    def add_attendance_event(self, event: AttendanceEvent) -> int:
        """Persist an event and return its id."""

    @abstractmethod
    def latest_attendance_event(self, identity_id: int) -> Optional[AttendanceEvent]:
        """Return the most recent event of an identity, if any."""

    @abstractmethod
    def has_attendance_event_on_date(self, identity_id: int, day: date) -> bool:
        """Whether the identity has an event within the local calendar day."""

    @abstractmethod
    def add_enrollment(self, display_name: str, vector) -> int:
        """Store one enrollment vector under a name and return its id."""

    @abstractmethod
    def delete_enrollment(self, identity_id: int) -> None:
        """Remove one enrollment row."""

    @abstractmethod
    def list_attendance_events(self, on_date: Optional[date] = None) -> List[AttendanceEvent]:
        """Return events (optionally of one day), newest first."""


class InMemoryAttendanceStore(AttendanceStore):
    """Thread-safe process-local store with auto-incrementing ids."""

    def __init__(self, vector_dim: int = 128):
        self.vector_dim = vector_dim
        self._lock = threading.Lock()
        self._enrollments: Dict[int, EnrollmentRecord] = {}
        self._events: List[AttendanceEvent] = []
        self._next_enrollment_id = 1
        self._next_event_id = 1

    def list_identities(self) -> List[EnrollmentRecord]:
        with self._lock:
            return list(self._enrollments.values())

    def add_enrollment(self, display_name: str, vector) -> int:
        name = display_name.strip()
        if not name:
            raise ValueError('Enrollment name must not be empty')
        record_vector = as_feature_vector(vector, self.vector_dim)

        with self._lock:
            enrollment_id = self._next_enrollment_id
            self._next_enrollment_id += 1
            self._enrollments[enrollment_id] = EnrollmentRecord(
                identity_id=enrollment_id,
                display_name=name,
                vector=record_vector,
            )

        logger.info(f'Enrolled {name} (enrollment {enrollment_id})')
        return enrollment_id

    def delete_enrollment(self, identity_id: int) -> None:
        with self._lock:
            self._enrollments.pop(identity_id, None)

    def add_attendance_event(self, event: AttendanceEvent) -> int:
        with self._lock:
            event_id = self._next_event_id
            self._next_event_id += 1
            self._events.append(event.with_id(event_id))
        return event_id

    def latest_attendance_event(self, identity_id: int) -> Optional[AttendanceEvent]:
        with self._lock:
            events = [e for e in self._events if e.identity_id == identity_id]
        if not events:
            return None
        return max(events, key=lambda e: e.timestamp)

    def has_attendance_event_on_date(self, identity_id: int, day: date) -> bool:
        start, end = day_bounds(day)
        with self._lock:
            return any(
                e.identity_id == identity_id and start <= e.timestamp < end
                for e in self._events
            )

    def list_attendance_events(self, on_date: Optional[date] = None) -> List[AttendanceEvent]:
        with self._lock:
            events = list(self._events)
        if on_date is not None:
            start, end = day_bounds(on_date)
            events = [e for e in events if start <= e.timestamp < end]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)
