"""
Confirmation state machine.

Runs the scan -> match -> record -> pause -> resume cycle:
- SCANNING: query vectors are matched and gated; an allowed match is
  persisted and pauses the controller
- AWAITING_ACK: query vectors are ignored until the operator acknowledges
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Iterable, List, Optional

from ..config import Config
from ..errors import NoGalleryData, PersistenceFailure
from ..logging_config import get_logger
from ..models import AttendanceEvent, MatchResult
from ..store import AttendanceStore
from .eligibility import Eligibility, EligibilityGate, describe_denial
from .gallery import GalleryIndex
from .matching import is_actionable, match

logger = get_logger(__name__)

ConfirmationListener = Callable[[str], None]
SnapshotProvider = Callable[[], Optional[str]]


class ConfirmationState(Enum):
    SCANNING = 'Scanning'
    AWAITING_ACK = 'AwaitingAck'


class TickStatus(Enum):
    IGNORED = 'ignored'
    CANCELLED = 'cancelled'
    UNKNOWN = 'unknown'
    LOW_CONFIDENCE = 'low_confidence'
    DENIED = 'denied'
    RECORDED = 'recorded'
    FAILED = 'failed'


@dataclass(frozen=True)
class TickOutcome:
    """What happened to one query vector."""

    status: TickStatus
    diagnostic: str
    match: Optional[MatchResult] = None
    eligibility: Optional[Eligibility] = None
    event: Optional[AttendanceEvent] = None
    error: Optional[Exception] = None


def confirmation_message(display_name: str) -> str:
    return f'The attendance of {display_name} has been recorded. Thank you!'


class ConfirmationController:
    """
    Two-state controller owning the pause/resume handshake.

    The scanning loop calls process() from one thread; the operator API
    calls acknowledge() from another. State changes happen under a lock,
    and the AWAITING_ACK state is what keeps two matching cycles from
    producing two events for one interaction.
    """

    def __init__(
        self,
        store: AttendanceStore,
        gate: EligibilityGate,
        config: Config,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize confirmation controller.

        Args:
            store: Store that receives attendance events
            gate: Eligibility gate consulted for positive matches
            config: Service configuration (thresholds, cooldown, limits)
            clock: Source of the current local time
        """
        self.store = store
        self.gate = gate
        self.config = config
        self.clock = clock

        self._lock = threading.Lock()
        self._state = ConfirmationState.SCANNING
        self._index = GalleryIndex(vector_dim=config.vector_dim)
        self._cancel_requested = threading.Event()
        self._pending_name: Optional[str] = None
        self._diagnostic: Optional[str] = None
        self._recent: Deque[AttendanceEvent] = deque(maxlen=config.recent_events_limit)
        self._listeners: List[ConfirmationListener] = []
        self.gallery_error: Optional[NoGalleryData] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConfirmationState:
        return self._state

    @property
    def is_awaiting_ack(self) -> bool:
        return self._state is ConfirmationState.AWAITING_ACK

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    @property
    def index(self) -> GalleryIndex:
        return self._index

    @property
    def pending_confirmation(self) -> Optional[str]:
        """Display name waiting for acknowledgment, if any."""
        if self._cancel_requested.is_set():
            return None
        return self._pending_name

    @property
    def diagnostic(self) -> Optional[str]:
        return self._diagnostic

    @property
    def recent_events(self) -> List[AttendanceEvent]:
        """Most recent recorded events, newest first."""
        with self._lock:
            return list(self._recent)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def add_confirmation_listener(self, listener: ConfirmationListener) -> None:
        self._listeners.append(listener)

    def start_session(self, index: GalleryIndex) -> None:
        """
        Install a gallery snapshot and reset to SCANNING.

        An empty gallery is reported once here; scanning still runs but
        can never match.
        """
        with self._lock:
            self._state = ConfirmationState.SCANNING
            self._cancel_requested.clear()
            self._pending_name = None
            self._diagnostic = None
        self.update_gallery(index)

        if index.is_empty:
            self.gallery_error = NoGalleryData(
                'No faces registered yet. Please register at least one face first.'
            )
            logger.warning(str(self.gallery_error))
        else:
            self.gallery_error = None
            logger.info(
                f'Session started with {len(index)} identities '
                f'({index.vector_count} vectors)'
            )

    def update_gallery(self, index: GalleryIndex) -> None:
        """Swap in a rebuilt gallery snapshot."""
        with self._lock:
            self._index = index

    def cancel(self) -> None:
        """
        Stop the session; no state transition is committed after this.

        Does not wait for a persist call that is already in flight. That
        event may still reach the store, but the controller stays in
        SCANNING and reports the cycle as cancelled.
        """
        self._cancel_requested.set()
        logger.info('Confirmation controller cancelled')

    def acknowledge(self) -> bool:
        """
        Operator acknowledgment: resume scanning.

        Returns:
            True if the controller was awaiting acknowledgment
        """
        if self._state is not ConfirmationState.AWAITING_ACK:
            return False

        with self._lock:
            if self._state is not ConfirmationState.AWAITING_ACK:
                return False
            name = self._pending_name
            self._state = ConfirmationState.SCANNING
            self._pending_name = None
            self._diagnostic = None

        logger.info(f'Acknowledged attendance of {name}, resuming scan')
        return True

    # ------------------------------------------------------------------
    # Matching cycle
    # ------------------------------------------------------------------

    def process_frame(
        self,
        vectors: Iterable,
        now: Optional[datetime] = None,
        snapshot: Optional[SnapshotProvider] = None,
    ) -> List[TickOutcome]:
        """
        Process every vector detected in one frame.

        Stops at the first vector that moves the controller out of
        SCANNING; the rest of the frame is not matched.
        """
        outcomes: List[TickOutcome] = []
        for vector in vectors:
            outcome = self.process(vector, now=now, snapshot=snapshot)
            outcomes.append(outcome)
            if outcome.status in (TickStatus.RECORDED, TickStatus.IGNORED, TickStatus.CANCELLED):
                break
        return outcomes

    def process(
        self,
        vector,
        now: Optional[datetime] = None,
        snapshot: Optional[SnapshotProvider] = None,
    ) -> TickOutcome:
        """
        Run one matching cycle for a query vector.

        Args:
            vector: Query feature vector
            now: Current time (defaults to the controller clock)
            snapshot: Called once, only when an event is about to be recorded

        Returns:
            TickOutcome describing the decision
        """
        if self._cancel_requested.is_set():
            return TickOutcome(TickStatus.CANCELLED, 'Session stopped')
        if self._state is ConfirmationState.AWAITING_ACK:
            return TickOutcome(TickStatus.IGNORED, self._diagnostic or 'Awaiting acknowledgment')

        now = now or self.clock()
        index = self._index
        result = match(index, vector, self.config.match_threshold)

        if not result.is_match:
            return self._finish(TickOutcome(TickStatus.UNKNOWN, 'Unknown face detected', match=result))

        name = result.display_name
        if not is_actionable(result, self.config.accept_confidence):
            return self._finish(TickOutcome(
                TickStatus.LOW_CONFIDENCE, f'Low confidence for {name}', match=result
            ))

        try:
            eligibility = self.gate.check_eligibility(result.identity_id, now)
        except PersistenceFailure as e:
            logger.error(f'Eligibility check failed for {name}: {e}')
            return self._finish(TickOutcome(
                TickStatus.FAILED, f'{name} - Store unavailable', match=result, error=e
            ))

        if not eligibility.allowed:
            reason = describe_denial(eligibility.reason, self.config.cooldown_seconds)
            logger.debug(f'{name} denied: {eligibility.reason.value}')
            return self._finish(TickOutcome(
                TickStatus.DENIED, f'{name} - {reason}', match=result, eligibility=eligibility
            ))

        event = AttendanceEvent(
            identity_id=result.identity_id,
            display_name=name,
            timestamp=now,
            confidence=result.confidence,
            snapshot_ref=self._take_snapshot(snapshot),
        )
        return self._record(event, result, eligibility)

    def _record(
        self,
        event: AttendanceEvent,
        result: MatchResult,
        eligibility: Eligibility,
    ) -> TickOutcome:
        with self._lock:
            if self._cancel_requested.is_set():
                return TickOutcome(TickStatus.CANCELLED, 'Session stopped', match=result)

            try:
                event_id = self.store.add_attendance_event(event)
            except Exception as e:
                error = e if isinstance(e, PersistenceFailure) else PersistenceFailure(str(e))
                logger.error(f'❌ Failed to record attendance for {event.display_name}: {error}')
                self._diagnostic = f'{event.display_name} - Failed to record attendance'
                return TickOutcome(
                    TickStatus.FAILED, self._diagnostic,
                    match=result, eligibility=eligibility, error=error,
                )

            event = event.with_id(event_id)
            self.gate.mark_recorded(event.identity_id, event.timestamp)

            if self._cancel_requested.is_set():
                logger.warning(
                    f'Session stopped while recording {event.display_name}; '
                    f'event {event_id} stored without confirmation'
                )
                return TickOutcome(
                    TickStatus.CANCELLED, 'Session stopped',
                    match=result, eligibility=eligibility, event=event,
                )

            self._state = ConfirmationState.AWAITING_ACK
            self._pending_name = event.display_name
            self._diagnostic = f'Recognized: {event.display_name}'
            self._recent.appendleft(event)

        logger.info(
            f'✅ Attendance recorded for {event.display_name} '
            f'(identity {event.identity_id}, confidence {event.confidence}%)'
        )
        self._emit_confirmation(event.display_name)

        return TickOutcome(
            TickStatus.RECORDED, self._diagnostic,
            match=result, eligibility=eligibility, event=event,
        )

    def _finish(self, outcome: TickOutcome) -> TickOutcome:
        self._diagnostic = outcome.diagnostic
        return outcome

    def _take_snapshot(self, snapshot: Optional[SnapshotProvider]) -> Optional[str]:
        if snapshot is None:
            return None
        try:
            return snapshot()
        except Exception as e:
            logger.warning(f'Snapshot capture failed: {e}')
            return None

    def _emit_confirmation(self, display_name: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(display_name)
            except Exception as e:
                logger.error(f'Confirmation listener failed: {e}', exc_info=True)
