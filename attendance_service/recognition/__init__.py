"""
Recognition algorithms package.

Contains modules for:
- Gallery indexing
- Embedding matching
- Attendance eligibility
- Operator confirmation
"""

from .gallery import GalleryIndex, build_gallery, normalize_name, format_display_name
from .matching import match, distance_to_confidence, is_actionable
from .eligibility import EligibilityGate, Eligibility, DenialReason
from .confirmation import (
    ConfirmationController,
    ConfirmationState,
    TickOutcome,
    TickStatus,
)

__all__ = [
    'GalleryIndex',
    'build_gallery',
    'normalize_name',
    'format_display_name',
    'match',
    'distance_to_confidence',
    'is_actionable',
    'EligibilityGate',
    'Eligibility',
    'DenialReason',
    'ConfirmationController',
    'ConfirmationState',
    'TickOutcome',
    'TickStatus',
]
