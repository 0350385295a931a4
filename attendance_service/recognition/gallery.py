"""
Gallery index module.

Groups raw enrollment rows into identities so that several photos of the
same person are matched jointly. An index is an immutable snapshot;
enrollment changes are picked up by building a new one.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..logging_config import get_logger
from ..models import EnrollmentRecord, Identity, as_feature_vector

logger = get_logger(__name__)

DEFAULT_VECTOR_DIM = 128


def normalize_name(display_name: str) -> str:
    """Grouping key for a display name: trimmed and lower-cased."""
    return display_name.strip().lower()


def format_display_name(key: str) -> str:
    """
    Capitalize the first letter of every word of a normalized name.

    Args:
        key: Normalized name (see normalize_name)

    Returns:
        Display name, e.g. "ada lovelace" -> "Ada Lovelace"
    """
    return re.sub(r'\b\w', lambda m: m.group(0).upper(), key)


class GalleryIndex:
    """
    Immutable snapshot of enrolled identities.

    Identities are kept sorted by identity id so that matching iterates
    them in a deterministic order.
    """

    def __init__(self, identities: Iterable[Identity] = (), vector_dim: int = DEFAULT_VECTOR_DIM):
        self.vector_dim = vector_dim
        self._identities: Tuple[Identity, ...] = tuple(
            sorted(identities, key=lambda identity: identity.identity_id)
        )
        self._by_id: Dict[int, Identity] = {
            identity.identity_id: identity for identity in self._identities
        }

    @property
    def identities(self) -> Tuple[Identity, ...]:
        return self._identities

    @property
    def is_empty(self) -> bool:
        return not self._identities

    @property
    def vector_count(self) -> int:
        return sum(len(identity.vectors) for identity in self._identities)

    def get(self, identity_id: int) -> Optional[Identity]:
        return self._by_id.get(identity_id)

    def __len__(self) -> int:
        return len(self._identities)

    def __iter__(self):
        return iter(self._identities)

    def __repr__(self) -> str:
        return f'GalleryIndex(identities={len(self)}, vectors={self.vector_count})'


def build_gallery(
    records: Iterable[EnrollmentRecord],
    vector_dim: int = DEFAULT_VECTOR_DIM
) -> GalleryIndex:
    """
    Build a gallery index from raw enrollment records.

    Records are grouped by normalized display name. Each group becomes one
    identity carrying the union of its vectors; its id is the smallest
    enrollment id in the group, which keeps it stable whatever order the
    store returns rows in.

    Args:
        records: Enrollment rows (may be empty)
        vector_dim: Required length of every vector

    Returns:
        New GalleryIndex snapshot

    Raises:
        ValueError: If a vector has the wrong shape
    """
    groups: Dict[str, List[EnrollmentRecord]] = {}

    for record in records:
        key = normalize_name(record.display_name)
        if not key:
            logger.warning(f'Enrollment {record.identity_id} has an empty name, skipping')
            continue
        groups.setdefault(key, []).append(record)

    identities: List[Identity] = []
    for key, group in groups.items():
        vectors = tuple(as_feature_vector(r.vector, vector_dim) for r in group)
        matrix = np.vstack(vectors)
        matrix.flags.writeable = False
        identities.append(Identity(
            identity_id=min(r.identity_id for r in group),
            display_name=format_display_name(key),
            vectors=vectors,
            matrix=matrix,
        ))

    index = GalleryIndex(identities, vector_dim=vector_dim)
    logger.debug(f'Built {index!r}')
    return index
