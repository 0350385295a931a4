"""
Main scanning loop.

Orchestrates one attendance scanning session:
- Camera connection
- Face detection (bounded by a timeout)
- Matching, eligibility and confirmation
- Gallery hot reload
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Callable, List, Optional

from .camera import connect_camera, encode_snapshot, reconnect_camera
from .config import Config
from .errors import AcquisitionFailure, DetectionTransientError, PersistenceFailure
from .logging_config import bind_session, get_logger
from .recognition.confirmation import ConfirmationController, TickOutcome
from .recognition.eligibility import EligibilityGate
from .recognition.gallery import GalleryIndex, build_gallery
from .store import AttendanceStore
from .utils.timing import Stopwatch

logger = get_logger(__name__)

MAX_READ_FAILURES = 10
READ_RETRY_DELAY = 0.5
MAX_DETECTOR_FAILURES = 20


class ScanningSession:
    """
    A single camera scanning session.

    Runs on one thread; the operator API only reads status and calls
    `controller.acknowledge()`. Stopping the session cancels the
    controller before anything else, so no event is recorded once a stop
    was requested.
    """

    def __init__(
        self,
        detector: Any,
        store: AttendanceStore,
        config: Config,
        camera_factory: Callable[[Config], Any] = connect_camera,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize scanning session.

        Args:
            detector: Object with detect(frame) -> list of feature vectors
            store: Attendance store
            config: Service configuration
            camera_factory: Opens the frame source (raises AcquisitionFailure)
            clock: Source of the current local time
        """
        self.detector = detector
        self.store = store
        self.config = config
        self.camera_factory = camera_factory
        self.session_id = config.camera_id or config.service_name or 'default'

        self.gate = EligibilityGate(store, config.cooldown_seconds)
        self.controller = ConfirmationController(store, self.gate, config, clock=clock)

        self.stop_flag = threading.Event()
        self.error: Optional[AcquisitionFailure] = None
        self.running = False
        self.frame_count = 0
        self.detector_failures = 0
        self.uptime = Stopwatch()

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='detector')
        self._pending: Optional[Future] = None
        self._since_reload = Stopwatch()

    def load_gallery(self) -> GalleryIndex:
        """
        Build a fresh gallery snapshot from the store.

        Returns:
            New gallery index (empty if the store could not be read)
        """
        try:
            records = self.store.list_identities()
            return build_gallery(records, vector_dim=self.config.vector_dim)
        except PersistenceFailure as e:
            logger.error(f'Failed to load enrollments: {e}')
        except Exception as e:
            logger.error(f'Unexpected error loading enrollments: {e}', exc_info=True)
        return GalleryIndex(vector_dim=self.config.vector_dim)

    def reload_gallery(self) -> None:
        """Rebuild the gallery and swap it into the controller."""
        logger.info('Reloading gallery...')
        try:
            records = self.store.list_identities()
            index = build_gallery(records, vector_dim=self.config.vector_dim)
        except PersistenceFailure as e:
            logger.error(f'Gallery reload failed: {e}')
            return
        except Exception as e:
            logger.error(f'Unexpected error reloading gallery: {e}', exc_info=True)
            return
        finally:
            self._since_reload.restart()

        self.controller.update_gallery(index)
        logger.info(f'Reloaded {len(index)} identities')

    def run(self) -> None:
        """
        Run the scanning loop until stopped or the camera is lost.

        A lost camera or a detector failing MAX_DETECTOR_FAILURES frames in a
        row ends the session; the AcquisitionFailure is kept in `self.error`.
        """
        bind_session(self.session_id)
        self.controller.start_session(self.load_gallery())
        self._since_reload.restart()
        self.running = True

        try:
            video_capture = self.camera_factory(self.config)
        except AcquisitionFailure as e:
            self._fail(e)
            return

        consecutive_failures = 0
        logger.info('🎬 Starting scanning loop...')

        try:
            while not self.stop_flag.is_set():
                ret, frame = video_capture.read()

                if not ret or frame is None:
                    consecutive_failures += 1
                    logger.warning(f'Failed to read frame ({consecutive_failures}/{MAX_READ_FAILURES})')

                    if consecutive_failures >= MAX_READ_FAILURES:
                        try:
                            video_capture, consecutive_failures = reconnect_camera(
                                video_capture, self.config, consecutive_failures
                            )
                        except AcquisitionFailure as e:
                            self._fail(e)
                            break
                    else:
                        self.stop_flag.wait(READ_RETRY_DELAY)
                    continue

                consecutive_failures = 0
                self.frame_count += 1

                if self._since_reload.elapsed() > self.config.reload_gallery_interval:
                    self.reload_gallery()

                if self.frame_count % self.config.frame_skip != 0:
                    continue

                if self.controller.is_awaiting_ack:
                    self.stop_flag.wait(0.05)
                    continue

                self.tick(frame)

                if self.detector_failures >= MAX_DETECTOR_FAILURES:
                    self._fail(AcquisitionFailure(
                        f'Detector unavailable after {self.detector_failures} consecutive failures'
                    ))
                    break
        finally:
            self._shutdown()
            video_capture.release()
            logger.info('Camera released')

    def tick(self, frame) -> List[TickOutcome]:
        """
        Detect faces in one frame and feed them to the controller.

        Args:
            frame: Frame in BGR format

        Returns:
            Outcomes for the vectors that were processed
        """
        if self.stop_flag.is_set():
            return []

        vectors = self._detect(frame)
        if not vectors or self.stop_flag.is_set():
            return []

        def snapshot() -> Optional[str]:
            return encode_snapshot(frame, self.config.snapshot_quality)

        try:
            outcomes = self.controller.process_frame(
                vectors,
                snapshot=snapshot if self.config.capture_snapshots else None,
            )
        except ValueError as e:
            logger.error(f'Rejected query vector: {e}')
            return []
        except Exception as e:
            logger.error(f'Matching cycle aborted: {e}', exc_info=True)
            return []

        for outcome in outcomes:
            logger.debug(f'{outcome.status.value}: {outcome.diagnostic}')
        return outcomes

    def stop(self) -> None:
        """Request the session to stop and discard in-flight detections."""
        logger.info('Stop signal received, stopping session...')
        self.stop_flag.set()
        self._shutdown()

    def _detect(self, frame) -> list:
        # A detector call that outlived its timeout is still running; skip
        # this frame instead of queueing behind it.
        if self._pending is not None and not self._pending.done():
            return []

        try:
            self._pending = self._executor.submit(self.detector.detect, frame)
        except RuntimeError:
            # Executor already shut down
            return []

        try:
            vectors = list(self._pending.result(timeout=self.config.detector_timeout_seconds))
        except FutureTimeout:
            error = DetectionTransientError(
                f'Detector did not answer within {self.config.detector_timeout_seconds}s'
            )
        except DetectionTransientError as e:
            error = e
        except Exception as e:
            error = DetectionTransientError(f'Detector error: {e}')
        else:
            self.detector_failures = 0
            return vectors

        self.detector_failures += 1
        logger.warning(
            f'{error}, skipping frame ({self.detector_failures}/{MAX_DETECTOR_FAILURES})'
        )
        return []

    def _fail(self, error: AcquisitionFailure) -> None:
        self.error = error
        logger.error(f'❌ Session terminated: {error}')
        self._shutdown()

    def _shutdown(self) -> None:
        self.controller.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.running = False


def start_api_server(session: ScanningSession) -> threading.Thread:
    """
    Start the operator API in a background thread.

    Args:
        session: Session exposed by the API

    Returns:
        The started daemon thread
    """
    from .app import create_app

    def _serve():
        logger.info(f'Starting operator API on port {session.config.api_port}...')
        app = create_app(session)
        app.run(
            host='0.0.0.0',
            port=session.config.api_port,
            threaded=True,
            debug=False,
            use_reloader=False
        )

    api_thread = threading.Thread(target=_serve, daemon=True, name='operator-api')
    api_thread.start()
    return api_thread


def run(
    detector: Any,
    store: AttendanceStore,
    config: Config,
    stop_flag: Optional[threading.Event] = None
) -> ScanningSession:
    """
    Run a scanning session with its operator API.

    Args:
        detector: Face detector
        store: Attendance store
        config: Service configuration
        stop_flag: Optional event that stops the session when set

    Returns:
        The finished session (check `session.error`)
    """
    session = ScanningSession(detector, store, config)
    start_api_server(session)
    logger.info(f'Operator status: http://localhost:{config.api_port}/status')

    watcher = None
    if stop_flag is not None:
        def _watch():
            stop_flag.wait()
            session.stop()

        watcher = threading.Thread(target=_watch, daemon=True, name='stop-watcher')
        watcher.start()

    try:
        session.run()
    except KeyboardInterrupt:
        session.stop()
        raise
    return session
