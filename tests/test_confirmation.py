"""
Tests for the confirmation state machine.

Run with: pytest tests/test_confirmation.py -v
"""

import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from attendance_service.errors import NoGalleryData, PersistenceFailure
from attendance_service.recognition.confirmation import (
    ConfirmationController,
    ConfirmationState,
    TickStatus,
    confirmation_message,
)
from attendance_service.recognition.eligibility import DenialReason
from attendance_service.recognition.gallery import GalleryIndex
from tests.conftest import make_config, vec

ALICE = 1
BOB = 2


class TestScanning:
    """Tests for the SCANNING state."""

    def test_initial_state(self, controller):
        assert controller.state is ConfirmationState.SCANNING
        assert controller.pending_confirmation is None
        assert controller.gallery_error is None

    def test_allowed_match_records_and_pauses(self, controller, store, gate, clock, alice_vector):
        confirmations = []
        controller.add_confirmation_listener(confirmations.append)

        outcome = controller.process(alice_vector)

        assert outcome.status is TickStatus.RECORDED
        assert outcome.event.identity_id == ALICE
        assert outcome.event.display_name == 'Alice Smith'
        assert outcome.event.confidence == 100
        assert outcome.event.timestamp == clock.now
        assert outcome.event.event_id is not None
        assert controller.state is ConfirmationState.AWAITING_ACK
        assert controller.pending_confirmation == 'Alice Smith'
        assert controller.diagnostic == 'Recognized: Alice Smith'
        assert confirmations == ['Alice Smith']
        assert gate.last_recorded_at(ALICE) == clock.now
        assert len(store.list_attendance_events()) == 1

    def test_second_enrollment_vector_also_matches(self, controller):
        # Alice's second photo sits 0.2 away from her first one
        outcome = controller.process(vec(0.2, axis=2, base=vec(1.0, axis=0)))
        assert outcome.status is TickStatus.RECORDED
        assert outcome.event.identity_id == ALICE

    def test_unknown_face_stays_scanning(self, controller, gate):
        with patch.object(gate, 'check_eligibility') as check:
            outcome = controller.process(vec(5.0, axis=10))

        check.assert_not_called()
        assert outcome.status is TickStatus.UNKNOWN
        assert outcome.diagnostic == 'Unknown face detected'
        assert controller.state is ConfirmationState.SCANNING

    def test_low_confidence_stays_scanning(self, store, gate, clock, gallery, alice_vector):
        config = make_config(accept_confidence=90)
        controller = ConfirmationController(store, gate, config, clock=clock)
        controller.start_session(gallery)

        outcome = controller.process(vec(0.3, axis=5, base=alice_vector))

        assert outcome.match.is_match
        assert outcome.match.confidence == 70
        assert outcome.status is TickStatus.LOW_CONFIDENCE
        assert outcome.diagnostic == 'Low confidence for Alice Smith'
        assert controller.state is ConfirmationState.SCANNING
        assert store.list_attendance_events() == []

    def test_denied_match_stays_scanning(self, controller, gate, clock, store, alice_vector):
        gate.mark_recorded(ALICE, clock.now - timedelta(seconds=3))

        outcome = controller.process(alice_vector)

        assert outcome.status is TickStatus.DENIED
        assert outcome.eligibility.reason is DenialReason.COOLDOWN_ACTIVE
        assert outcome.diagnostic == 'Alice Smith - Cooldown active (10s)'
        assert controller.state is ConfirmationState.SCANNING
        assert store.list_attendance_events() == []

    def test_already_marked_today(self, controller, store, clock, alice_vector, bob_vector):
        controller.process(alice_vector)
        controller.acknowledge()
        clock.now = clock.now + timedelta(hours=3)

        outcome = controller.process(alice_vector)

        assert outcome.status is TickStatus.DENIED
        assert outcome.diagnostic == 'Alice Smith - Already marked today'
        assert controller.process(bob_vector).status is TickStatus.RECORDED


class TestAwaitingAck:
    """Tests for the pause/resume handshake."""

    def test_vectors_ignored_while_awaiting(self, controller, store, alice_vector):
        controller.process(alice_vector)

        with patch('attendance_service.recognition.confirmation.match') as matcher:
            outcomes = [controller.process(alice_vector) for _ in range(10)]

        matcher.assert_not_called()
        assert all(o.status is TickStatus.IGNORED for o in outcomes)
        assert len(store.list_attendance_events()) == 1

    def test_acknowledge_resumes_and_next_match_records_once(self, controller, store, clock, alice_vector):
        controller.process(alice_vector)
        for _ in range(10):
            controller.process(alice_vector)

        assert controller.acknowledge() is True
        assert controller.state is ConfirmationState.SCANNING
        assert controller.pending_confirmation is None

        next_day = clock.now + timedelta(days=1)
        outcome = controller.process(alice_vector, now=next_day)

        assert outcome.status is TickStatus.RECORDED
        assert len(store.list_attendance_events()) == 2

    def test_acknowledge_while_scanning_is_noop(self, controller):
        assert controller.acknowledge() is False
        assert controller.state is ConfirmationState.SCANNING

    def test_frame_stops_after_recording(self, controller, store, alice_vector, bob_vector):
        outcomes = controller.process_frame([alice_vector, bob_vector])

        assert [o.status for o in outcomes] == [TickStatus.RECORDED]
        assert len(store.list_attendance_events()) == 1

    def test_frame_continues_past_unknown_faces(self, controller, bob_vector):
        outcomes = controller.process_frame([vec(5.0, axis=9), bob_vector])
        assert [o.status for o in outcomes] == [TickStatus.UNKNOWN, TickStatus.RECORDED]


class TestFailures:
    """Tests for persistence failures and cancellation."""

    def test_persist_failure_keeps_scanning(self, controller, store, gate, alice_vector):
        with patch.object(store, 'add_attendance_event', side_effect=PersistenceFailure('disk full')):
            outcome = controller.process(alice_vector)

        assert outcome.status is TickStatus.FAILED
        assert isinstance(outcome.error, PersistenceFailure)
        assert controller.state is ConfirmationState.SCANNING
        assert gate.last_recorded_at(ALICE) is None

        # Next vector gets a fresh chance
        assert controller.process(alice_vector).status is TickStatus.RECORDED

    def test_unexpected_store_error_is_wrapped(self, controller, store, alice_vector):
        with patch.object(store, 'add_attendance_event', side_effect=OSError('boom')):
            outcome = controller.process(alice_vector)

        assert outcome.status is TickStatus.FAILED
        assert isinstance(outcome.error, PersistenceFailure)

    def test_eligibility_read_failure_aborts_cycle(self, controller, store, alice_vector):
        with patch.object(store, 'latest_attendance_event', side_effect=PersistenceFailure('timeout')):
            outcome = controller.process(alice_vector)

        assert outcome.status is TickStatus.FAILED
        assert controller.state is ConfirmationState.SCANNING

    def test_cancelled_controller_records_nothing(self, controller, store, alice_vector):
        controller.cancel()

        outcome = controller.process(alice_vector)

        assert outcome.status is TickStatus.CANCELLED
        assert store.list_attendance_events() == []

    def test_cancel_after_match_blocks_recording(self, controller, store, alice_vector):
        def snapshot():
            # Stop requested while the cycle is already past matching
            controller.cancel()
            return None

        outcome = controller.process(alice_vector, snapshot=snapshot)

        assert outcome.status is TickStatus.CANCELLED
        assert store.list_attendance_events() == []

    def test_cancel_during_persist_does_not_wait_or_transition(self, controller, store, alice_vector):
        persisting = threading.Event()
        release = threading.Event()
        real_add = store.add_attendance_event

        def slow_add(event):
            persisting.set()
            release.wait(timeout=5)
            return real_add(event)

        outcomes = []
        with patch.object(store, 'add_attendance_event', side_effect=slow_add):
            worker = threading.Thread(target=lambda: outcomes.append(controller.process(alice_vector)))
            worker.start()
            assert persisting.wait(timeout=5)

            canceller = threading.Thread(target=controller.cancel)
            canceller.start()
            canceller.join(timeout=1)
            assert not canceller.is_alive()

            release.set()
            worker.join(timeout=5)

        assert outcomes[0].status is TickStatus.CANCELLED
        assert controller.state is ConfirmationState.SCANNING
        assert controller.pending_confirmation is None
        assert controller.recent_events == []

    def test_failing_listener_does_not_break_cycle(self, controller, alice_vector):
        controller.add_confirmation_listener(MagicMock(side_effect=RuntimeError('ui gone')))
        assert controller.process(alice_vector).status is TickStatus.RECORDED


class TestSession:
    """Tests for session start, gallery swaps and bookkeeping."""

    def test_empty_gallery_never_reaches_gate(self, store, gate, config, clock):
        controller = ConfirmationController(store, gate, config, clock=clock)
        controller.start_session(GalleryIndex())

        with patch.object(gate, 'check_eligibility') as check:
            outcome = controller.process(vec(1.0, axis=0))

        check.assert_not_called()
        assert isinstance(controller.gallery_error, NoGalleryData)
        assert outcome.status is TickStatus.UNKNOWN
        assert outcome.match.confidence == 0

    def test_start_session_resets_state(self, controller, gallery, alice_vector):
        controller.process(alice_vector)
        controller.cancel()

        controller.start_session(gallery)

        assert controller.state is ConfirmationState.SCANNING
        assert not controller.cancelled

    def test_snapshot_attached_to_event(self, controller, alice_vector):
        outcome = controller.process(alice_vector, snapshot=lambda: 'data:image/jpeg;base64,AAAA')
        assert outcome.event.snapshot_ref == 'data:image/jpeg;base64,AAAA'

    def test_snapshot_not_taken_when_denied(self, controller, gate, clock, alice_vector):
        gate.mark_recorded(ALICE, clock.now)
        snapshot = MagicMock(return_value='data:')

        controller.process(alice_vector, snapshot=snapshot)
        snapshot.assert_not_called()

    def test_recent_events_are_bounded(self, store, gate, clock, gallery, alice_vector):
        config = make_config(recent_events_limit=2)
        controller = ConfirmationController(store, gate, config, clock=clock)
        controller.start_session(gallery)

        start = datetime(2026, 3, 2, 9, 0)
        for day in range(3):
            controller.process(alice_vector, now=start + timedelta(days=day))
            controller.acknowledge()

        recent = controller.recent_events
        assert len(recent) == 2
        assert recent[0].timestamp == start + timedelta(days=2)


def test_confirmation_message():
    assert confirmation_message('Alice Smith') == (
        'The attendance of Alice Smith has been recorded. Thank you!'
    )
