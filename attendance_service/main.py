"""
Attendance Service - Main Entry Point

Commands:
- run: start a scanning session with the operator API
- enroll: register a face from a photo
"""

import argparse
import sys

import cv2

from .config import Config, load_config, load_local_env
from .errors import PersistenceFailure
from .logging_config import get_logger, setup_logging
from .store import AttendanceStore, InMemoryAttendanceStore

logger = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Attendance Service - Face Matching and Attendance Gating'
    )
    parser.add_argument(
        '--backend-url',
        type=str,
        help='Backend API URL (or set BACKEND_URL)'
    )
    parser.add_argument(
        '--store',
        choices=['http', 'memory'],
        help='Store backend (or set STORE_BACKEND)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run a scanning session')
    run_parser.add_argument('--camera-source', type=str, help='Camera index or stream URL')
    run_parser.add_argument('--port', type=int, help='Operator API port')
    run_parser.add_argument('--threshold', type=float, help='Match distance threshold')
    run_parser.add_argument('--cooldown', type=float, help='Cooldown in seconds')

    enroll_parser = subparsers.add_parser('enroll', help='Register a face from a photo')
    enroll_parser.add_argument('--name', type=str, required=True, help='Full name')
    enroll_parser.add_argument('--photo', type=str, required=True, help='Path to the photo')

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Apply command line overrides on top of the environment config."""
    config = load_config().with_overrides(
        backend_url=args.backend_url,
        store_backend=args.store,
        debug_mode=True if args.debug else None,
    )
    if args.command == 'run':
        config = config.with_overrides(
            camera_source=args.camera_source,
            camera_id=args.camera_source,
            api_port=args.port,
            match_threshold=args.threshold,
            cooldown_seconds=args.cooldown,
        )
    return config


def create_store(config: Config) -> AttendanceStore:
    """Create the configured attendance store."""
    if config.store_backend == 'memory':
        logger.warning('Using in-memory store; events are lost on exit')
        return InMemoryAttendanceStore(vector_dim=config.vector_dim)

    from .backend_store import BackendAttendanceStore
    return BackendAttendanceStore(config)


def enroll(config: Config, store: AttendanceStore, name: str, photo_path: str) -> int:
    """
    Register one face from a photo.

    Returns:
        Process exit code
    """
    from .detector import FaceDetector

    if not name.strip():
        logger.error('Please enter a name.')
        return 2

    image = cv2.imread(photo_path)
    if image is None:
        logger.error(f'Failed to load image {photo_path}')
        return 2

    encoding = FaceDetector(config).encode_photo(image)
    if encoding is None:
        logger.error(
            'No face detected in the photo. Please try a different photo - '
            'make sure your face is visible and well-lit.'
        )
        return 1

    try:
        enrollment_id = store.add_enrollment(name, encoding)
    except PersistenceFailure as e:
        logger.error(f'Failed to register face: {e}')
        return 1

    logger.info(f'✅ {name.strip()} has been registered successfully! (enrollment {enrollment_id})')
    return 0


def run_session(config: Config, store: AttendanceStore) -> int:
    """
    Run one scanning session until interrupted or the camera is lost.

    Returns:
        Process exit code
    """
    from .detector import FaceDetector
    from .video_loop import run

    logger.info('=' * 60)
    logger.info('Attendance Service')
    logger.info('=' * 60)
    logger.info(f'Camera: {config.camera_id}')
    logger.info(f'Store: {config.store_backend} ({config.backend_url})')
    logger.info(
        f'Threshold: {config.match_threshold} | Accept: {config.accept_confidence}% | '
        f'Cooldown: {config.cooldown_seconds}s'
    )
    logger.info('=' * 60)

    detector = FaceDetector(config)
    session = run(detector, store, config)

    if session.error is not None:
        logger.error(f'Session ended with error: {session.error}')
        return 1
    return 0


def main(argv=None) -> None:
    """Main entry point."""
    load_local_env()
    args = parse_args(argv)
    config = build_config(args)

    setup_logging(config.camera_id or config.service_name, config.debug_mode)

    try:
        store = create_store(config)
        if args.command == 'enroll':
            sys.exit(enroll(config, store, args.name, args.photo))
        sys.exit(run_session(config, store))
    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
        sys.exit(0)
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
