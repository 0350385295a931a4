"""
Embedding matching module.

Matches a query feature vector against the gallery using Euclidean
distance. An identity's score is its best (smallest) distance over all of
its enrolled vectors.
"""

import math

import numpy as np

from ..models import UNKNOWN_LABEL, MatchResult, as_feature_vector
from .gallery import GalleryIndex


def distance_to_confidence(distance: float) -> int:
    """
    Convert a match distance into a 0-100 confidence score.

    Rounds half up and clamps to [0, 100]; an infinite distance gives 0.

    Args:
        distance: Euclidean distance

    Returns:
        Confidence percentage
    """
    if not math.isfinite(distance):
        return 0
    confidence = math.floor((1.0 - distance) * 100 + 0.5)
    return max(0, min(100, confidence))


def match(index: GalleryIndex, query_vector, threshold: float) -> MatchResult:
    """
    Match one query vector against a gallery snapshot.

    Ties between identities go to the one with the smallest id, since
    the index iterates identities in ascending id order and only a
    strictly smaller score replaces the current best.

    Args:
        index: Gallery snapshot
        query_vector: Feature vector to classify
        threshold: Maximum distance (inclusive) of a positive match

    Returns:
        MatchResult for the best identity, or an unknown result. Unknown
        results still carry the best distance and its confidence.

    Raises:
        ValueError: If the query vector has the wrong length
    """
    if index.is_empty:
        return MatchResult(
            identity_id=None,
            display_name=UNKNOWN_LABEL,
            distance=math.inf,
            confidence=0,
        )

    query = as_feature_vector(query_vector, index.vector_dim)

    best_identity = None
    best_distance = math.inf

    for identity in index:
        distances = np.linalg.norm(identity.matrix - query, axis=1)
        score = float(distances.min())
        if score < best_distance:
            best_distance = score
            best_identity = identity

    confidence = distance_to_confidence(best_distance)

    if best_identity is not None and best_distance <= threshold:
        return MatchResult(
            identity_id=best_identity.identity_id,
            display_name=best_identity.display_name,
            distance=best_distance,
            confidence=confidence,
        )

    return MatchResult(
        identity_id=None,
        display_name=UNKNOWN_LABEL,
        distance=best_distance,
        confidence=confidence,
    )


def is_actionable(result: MatchResult, accept_confidence: int) -> bool:
    """Whether a match is positive and confident enough to act on."""
    return result.is_match and result.confidence >= accept_confidence
