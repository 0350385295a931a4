"""
Data model for Attendance Service.

Feature vectors are plain numpy arrays; everything else is a small
dataclass passed between the gallery, matcher, gate and controller.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import numpy as np

UNKNOWN_LABEL = 'unknown'

# A fixed-length (128 by default) float vector produced by the detector
FeatureVector = np.ndarray


def as_feature_vector(values: Any, dim: Optional[int] = None) -> FeatureVector:
    """
    Convert a sequence of numbers into an immutable 1-D float64 vector.

    Args:
        values: Any array-like of numbers
        dim: Expected length, checked when given

    Returns:
        Read-only numpy array

    Raises:
        ValueError: If the input is not one-dimensional or has the wrong length
    """
    vector = np.array(values, dtype=np.float64)
    if vector.ndim != 1:
        raise ValueError(f'Feature vector must be 1-D, got shape {vector.shape}')
    if dim is not None and vector.shape[0] != dim:
        raise ValueError(f'Feature vector must have {dim} values, got {vector.shape[0]}')
    vector.flags.writeable = False
    return vector


@dataclass(frozen=True, eq=False)
class EnrollmentRecord:
    """One raw enrollment row (one registered photo) from the store."""

    identity_id: int
    display_name: str
    vector: FeatureVector


@dataclass(frozen=True, eq=False)
class Identity:
    """
    A registered person with every vector enrolled under their name.

    Attributes:
        identity_id: Stable id (smallest enrollment id of the group)
        display_name: Human readable name
        vectors: All enrolled feature vectors
        matrix: The same vectors stacked into an (N, dim) array
    """

    identity_id: int
    display_name: str
    vectors: Tuple[FeatureVector, ...]
    matrix: np.ndarray = field(repr=False)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one query vector against the gallery."""

    identity_id: Optional[int]
    display_name: str
    distance: float
    confidence: int

    @property
    def is_match(self) -> bool:
        return self.identity_id is not None


@dataclass(frozen=True)
class AttendanceEvent:
    """
    A recorded attendance.

    `event_id` is None until the store has persisted the event.
    """

    identity_id: int
    display_name: str
    timestamp: datetime
    confidence: int
    snapshot_ref: Optional[str] = None
    event_id: Optional[int] = None

    def with_id(self, event_id: int) -> 'AttendanceEvent':
        return replace(self, event_id=event_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.event_id,
            'faceId': self.identity_id,
            'name': self.display_name,
            'timestamp': self.timestamp.isoformat(),
            'confidence': self.confidence,
            'photoDataUrl': self.snapshot_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttendanceEvent':
        timestamp = data['timestamp']
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
        if timestamp.tzinfo is not None:
            # Day boundaries are local midnight, so keep naive local time
            timestamp = timestamp.astimezone().replace(tzinfo=None)
        return cls(
            identity_id=int(data['faceId']),
            display_name=data.get('name', ''),
            timestamp=timestamp,
            confidence=int(data.get('confidence', 0)),
            snapshot_ref=data.get('photoDataUrl'),
            event_id=data.get('id'),
        )
