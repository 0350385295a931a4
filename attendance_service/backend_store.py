"""
Backend API store.

Reads enrollments and reads/writes attendance events through the
backend HTTP API. Every transport error, HTTP error or malformed body
is raised as PersistenceFailure so the controller can abort just the
current cycle.
"""

from datetime import date
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from .config import Config
from .errors import PersistenceFailure
from .logging_config import get_logger
from .models import AttendanceEvent, EnrollmentRecord, as_feature_vector
from .store import AttendanceStore

logger = get_logger(__name__)

T = TypeVar('T')


class BackendAttendanceStore(AttendanceStore):
    """AttendanceStore backed by the backend REST API."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        """
        Initialize backend store.

        Args:
            config: Service configuration (backend URL, timeout, vector size)
            session: Optional requests session (shared connection pool)
        """
        self.base_url = config.backend_url.rstrip('/')
        self.timeout = config.request_timeout_seconds
        self.vector_dim = config.vector_dim
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    # Enrollments
    # ------------------------------------------------------------------

    def list_identities(self) -> List[EnrollmentRecord]:
        logger.info('Loading enrollments from backend...')
        response = self._request('GET', '/api/faces')
        records = self._parse(response, self._parse_enrollments)
        logger.info(f'✅ Loaded {len(records)} enrollments from backend')
        return records

    def add_enrollment(self, display_name: str, vector) -> int:
        name = display_name.strip()
        if not name:
            raise ValueError('Enrollment name must not be empty')
        payload = {
            'name': name,
            'descriptor': as_feature_vector(vector, self.vector_dim).tolist(),
        }
        response = self._request('POST', '/api/faces', json=payload)
        enrollment_id = self._parse(response, _created_id)
        logger.info(f'Enrolled {name} (enrollment {enrollment_id})')
        return enrollment_id

    def delete_enrollment(self, identity_id: int) -> None:
        self._request('DELETE', f'/api/faces/{identity_id}')

    # ------------------------------------------------------------------
    # Attendance events
    # ------------------------------------------------------------------

    def add_attendance_event(self, event: AttendanceEvent) -> int:
        logger.info(f'📤 Sending attendance for {event.display_name} (identity {event.identity_id})')
        payload = event.to_dict()
        payload.pop('id')
        response = self._request('POST', '/api/attendance', json=payload)
        return self._parse(response, _created_id)

    def latest_attendance_event(self, identity_id: int) -> Optional[AttendanceEvent]:
        response = self._request(
            'GET', '/api/attendance/latest',
            params={'faceId': identity_id},
            allow_not_found=True,
        )
        if response.status_code == 404:
            return None
        return self._parse(response, lambda data: AttendanceEvent.from_dict(data) if data else None)

    def has_attendance_event_on_date(self, identity_id: int, day: date) -> bool:
        response = self._request(
            'GET', '/api/attendance/exists',
            params={'faceId': identity_id, 'date': day.isoformat()},
        )
        return self._parse(response, lambda data: bool(data['exists']))

    def list_attendance_events(self, on_date: Optional[date] = None) -> List[AttendanceEvent]:
        params: Dict[str, Any] = {}
        if on_date is not None:
            params['date'] = on_date.isoformat()
        response = self._request('GET', '/api/attendance', params=params)
        events = self._parse(response, lambda rows: [AttendanceEvent.from_dict(row) for row in rows])
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def _parse_enrollments(self, rows: List[Dict[str, Any]]) -> List[EnrollmentRecord]:
        records: List[EnrollmentRecord] = []
        for row in rows:
            descriptor = row.get('descriptor')
            if not descriptor:
                logger.warning(f"Enrollment {row.get('id')} has no descriptor, skipping")
                continue
            try:
                vector = as_feature_vector(descriptor, self.vector_dim)
            except ValueError as e:
                logger.warning(f"Enrollment {row.get('id')} has an invalid descriptor: {e}")
                continue
            records.append(EnrollmentRecord(
                identity_id=int(row['id']),
                display_name=row.get('name') or '',
                vector=vector,
            ))
        return records

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _parse(self, response: requests.Response, parser: Callable[[Any], T]) -> T:
        """
        Decode a JSON body and convert it with `parser`.

        Raises:
            PersistenceFailure: If the body is not JSON or has the wrong shape
        """
        try:
            return parser(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            url = getattr(response, 'url', '')
            raise PersistenceFailure(f'Malformed response from {url}: {e!r}') from e

    def _request(
        self,
        method: str,
        path: str,
        allow_not_found: bool = False,
        **kwargs
    ) -> requests.Response:
        url = f'{self.base_url}{path}'
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise PersistenceFailure(f'Timeout calling {method} {url}') from e
        except requests.exceptions.ConnectionError as e:
            raise PersistenceFailure(f'Connection error calling {method} {url}') from e
        except requests.exceptions.RequestException as e:
            raise PersistenceFailure(f'Error calling {method} {url}: {e}') from e

        if allow_not_found and response.status_code == 404:
            return response
        if not response.ok:
            raise PersistenceFailure(
                f'{method} {url} failed: {response.status_code} {response.text}'
            )
        return response


def _created_id(data: Dict[str, Any]) -> int:
    return int(data['id'])
