"""
Face detector module.

Turns camera frames into 128-dimensional face encodings using the
face_recognition (dlib) models.
"""

from typing import List, Optional

import cv2
import face_recognition
import numpy as np

from .config import Config
from .errors import DetectionTransientError
from .logging_config import get_logger

logger = get_logger(__name__)


class FaceDetector:
    """
    Detect faces and compute their feature vectors.

    Implements the detector collaborator: `detect(frame)` returns zero or
    more feature vectors for a BGR frame.
    """

    def __init__(self, config: Config):
        self.model = config.detection_model
        self.scale = config.detection_scale
        logger.info(f'Face detector ready (model={self.model}, scale={self.scale})')

    def detect(self, frame: np.ndarray) -> List[np.ndarray]:
        """
        Detect all faces in a frame.

        Args:
            frame: Frame in BGR format

        Returns:
            List of 128-d face encodings (order not significant)

        Raises:
            DetectionTransientError: If the models fail on this frame
        """
        try:
            rgb = self._prepare(frame)
            locations = face_recognition.face_locations(rgb, model=self.model)
            if not locations:
                return []
            return list(face_recognition.face_encodings(rgb, locations))
        except Exception as e:
            raise DetectionTransientError(f'Face detection failed: {e}') from e

    def encode_photo(self, image: np.ndarray) -> Optional[np.ndarray]:
        """
        Encode the first face of an enrollment photo.

        Args:
            image: Photo in BGR format

        Returns:
            Face encoding or None if no face was found
        """
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        encodings = face_recognition.face_encodings(rgb)
        if not encodings:
            return None
        if len(encodings) > 1:
            logger.warning(f'Photo contains {len(encodings)} faces, using the first one')
        return encodings[0]

    def _prepare(self, frame: np.ndarray) -> np.ndarray:
        if self.scale != 1.0:
            frame = cv2.resize(frame, (0, 0), fx=self.scale, fy=self.scale)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
