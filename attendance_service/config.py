"""
Configuration module for Attendance Service.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for Attendance Service.

    Store:
        backend_url: Base URL of the backend API (e.g., http://backend:3000)
        store_backend: 'http' for the backend API, 'memory' for an in-process store
        request_timeout_seconds: Timeout for every backend request

    Camera Settings:
        camera_source: Camera source - can be:
            - Integer (0, 1, 2) for local webcam
            - RTSP URL: rtsp://user:pass@ip:port/path
            - HTTP URL: http://camera-gateway:4000/streams/1.mjpg
        camera_id: Logical identifier for this camera (for logging/monitoring)
        frame_skip: Process every N-th frame (higher = faster, less responsive)

    Service Identity:
        service_name: Name of this service instance
        api_port: Port for the operator HTTP API

    Matching:
        match_threshold: Euclidean distance threshold (inclusive) for a candidate match
        accept_confidence: Minimum confidence (0-100) before a match is acted on
        vector_dim: Length of every feature vector

    Detection:
        detection_model: face_recognition location model ('hog' or 'cnn')
        detection_scale: Resize factor applied to frames before detection
        detector_timeout_seconds: Longest wait for one detector call

    Attendance:
        cooldown_seconds: Minimum time between two events of one identity
        capture_snapshots: Attach a JPEG snapshot to recorded events
        snapshot_quality: JPEG quality of snapshots (0-100)
        recent_events_limit: Number of recent events kept for the operator

    System:
        reload_gallery_interval: Seconds between gallery rebuilds
        debug_mode: Enable debug logging
    """

    # Store
    backend_url: str
    store_backend: str
    request_timeout_seconds: float

    # Camera
    camera_source: str
    camera_id: str
    frame_skip: int

    # Service
    service_name: str
    api_port: int

    # Matching
    match_threshold: float
    accept_confidence: int
    vector_dim: int

    # Detection
    detection_model: str
    detection_scale: float
    detector_timeout_seconds: float

    # Attendance
    cooldown_seconds: float
    capture_snapshots: bool
    snapshot_quality: int
    recent_events_limit: int

    # System
    reload_gallery_interval: int
    debug_mode: bool

    def with_overrides(self, **overrides) -> 'Config':
        """Return a copy with the given fields replaced (None values are ignored)."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


def load_local_env(env_path: Path = None) -> None:
    """Load environment variables from attendance_service/.env if present."""
    env_path = env_path or Path(__file__).resolve().parent / '.env'
    if not env_path.exists():
        return

    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        os.environ.setdefault(key.strip(), value.strip())


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object
    """
    camera_source_raw = os.getenv('CAMERA_SOURCE', '0')

    return Config(
        # Store
        backend_url=os.getenv('BACKEND_URL', 'http://localhost:3000'),
        store_backend=os.getenv('STORE_BACKEND', 'http').lower(),
        request_timeout_seconds=float(os.getenv('REQUEST_TIMEOUT', '5.0')),

        # Camera
        camera_source=camera_source_raw,
        camera_id=os.getenv('CAMERA_ID', camera_source_raw),
        frame_skip=int(os.getenv('FRAME_SKIP', '1')),

        # Service
        service_name=os.getenv('SERVICE_NAME', 'attendance'),
        api_port=int(os.getenv('API_PORT', '5001')),

        # Matching
        match_threshold=float(os.getenv('MATCH_THRESHOLD', '0.45')),
        accept_confidence=int(os.getenv('ACCEPT_CONFIDENCE', '55')),
        vector_dim=int(os.getenv('VECTOR_DIM', '128')),

        # Detection
        detection_model=os.getenv('DETECTION_MODEL', 'hog'),
        detection_scale=float(os.getenv('DETECTION_SCALE', '1.0')),
        detector_timeout_seconds=float(os.getenv('DETECTOR_TIMEOUT', '2.0')),

        # Attendance
        cooldown_seconds=float(os.getenv('COOLDOWN_SECONDS', '10.0')),
        capture_snapshots=_env_bool('CAPTURE_SNAPSHOTS', 'true'),
        snapshot_quality=int(os.getenv('SNAPSHOT_QUALITY', '60')),
        recent_events_limit=int(os.getenv('RECENT_EVENTS', '10')),

        # System
        reload_gallery_interval=int(os.getenv('RELOAD_INTERVAL', '300')),
        debug_mode=_env_bool('DEBUG', 'false'),
    )
