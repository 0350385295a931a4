"""
Camera connection module.

Opens the frame source for a scanning session:
- Local webcams (index 0, 1, 2)
- RTSP / HTTP streams

Also encodes frames into JPEG snapshot references for attendance events.
"""

import base64
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import Config
from .errors import AcquisitionFailure
from .logging_config import get_logger

logger = get_logger(__name__)


def _resolve_source(camera_source: str):
    """Return (camera_type, source) for a configured camera source."""
    try:
        return 'local', int(camera_source)
    except ValueError:
        return 'stream', camera_source


def connect_camera(config: Config, max_retries: int = 5) -> cv2.VideoCapture:
    """
    Connect to camera with retry logic.

    Args:
        config: Service configuration
        max_retries: Maximum connection attempts

    Returns:
        Opened VideoCapture object

    Raises:
        AcquisitionFailure: If connection fails after max_retries
    """
    camera_type, source = _resolve_source(config.camera_source)
    label = source if camera_type == 'local' else _sanitize_url(source)

    for attempt in range(max_retries):
        logger.info(f'Connecting to {camera_type} camera {label} (attempt {attempt + 1}/{max_retries})...')

        video_capture = cv2.VideoCapture(source)
        if camera_type == 'stream' and is_rtsp_stream(config.camera_source):
            video_capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        if video_capture.isOpened():
            ret, frame = video_capture.read()
            if ret and frame is not None:
                logger.info(f'✅ Camera connected ({camera_type}, {frame.shape[1]}x{frame.shape[0]})')
                return video_capture
            logger.warning('Camera opened but failed to read frame')
        else:
            logger.warning('Failed to open camera')
        video_capture.release()

        if attempt < max_retries - 1:
            wait_time = 2 ** attempt
            logger.info(f'Retrying in {wait_time} seconds...')
            time.sleep(wait_time)

    raise AcquisitionFailure(f'Cannot connect to camera {label} after {max_retries} attempts')


def reconnect_camera(
    video_capture: cv2.VideoCapture,
    config: Config,
    consecutive_failures: int
) -> Tuple[cv2.VideoCapture, int]:
    """
    Reconnect to camera after repeated read failures.

    Args:
        video_capture: Current VideoCapture (will be released)
        config: Service configuration
        consecutive_failures: Number of consecutive failures

    Returns:
        Tuple of (new VideoCapture, reset failure count)

    Raises:
        AcquisitionFailure: If the camera cannot be reopened
    """
    logger.error(f'Too many failures ({consecutive_failures}), reconnecting...')

    try:
        video_capture.release()
    except Exception as e:
        logger.warning(f'Error releasing camera: {e}')

    time.sleep(2)
    return connect_camera(config), 0


def is_rtsp_stream(camera_source: str) -> bool:
    return camera_source.startswith('rtsp://')


def encode_snapshot(frame: Optional[np.ndarray], quality: int = 60) -> Optional[str]:
    """
    Encode a frame as a JPEG data URL.

    Args:
        frame: Frame in BGR format
        quality: JPEG quality (0-100)

    Returns:
        'data:image/jpeg;base64,...' string, or None if encoding failed
    """
    if frame is None:
        return None

    ret, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ret:
        logger.warning('Failed to encode snapshot')
        return None

    encoded = base64.b64encode(buffer.tobytes()).decode('ascii')
    return f'data:image/jpeg;base64,{encoded}'


def _sanitize_url(url: str) -> str:
    """
    Remove password from URL for logging.

    Args:
        url: URL with potential password

    Returns:
        Sanitized URL
    """
    if '://' not in url:
        return url

    protocol, rest = url.split('://', 1)
    if '@' not in rest:
        return url

    creds, host = rest.rsplit('@', 1)
    username = creds.split(':', 1)[0]
    return f'{protocol}://{username}@{host}'
