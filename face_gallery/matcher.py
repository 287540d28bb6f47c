"""
Matcher Module

Nearest-identity search over the gallery. The scan is linear, which is fast
enough for galleries of up to about a thousand identities.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .gallery import EmbeddingRecord, IdentityGallery
from .similarity import Vector, similarity

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.55


@dataclass(frozen=True)
class Match:
    name: str
    similarity: float
    record_id: Optional[str] = None


def find_best_match(query: Vector, records: Iterable[EmbeddingRecord],
                    threshold: float = DEFAULT_THRESHOLD) -> Optional[Match]:
    """
    Find the record most similar to the query.

    Only a score strictly greater than both the best so far and the threshold
    replaces the current candidate, so ties keep the first record seen.

    Args:
        query: Query embedding
        records: Gallery records in iteration order
        threshold: Minimum (exclusive) similarity for a match

    Returns:
        Best match, or None if nothing scores above the threshold
    """
    best: Optional[EmbeddingRecord] = None
    best_score = 0.0

    for record in records:
        score = similarity(query, record.vector)
        if score > best_score and score > threshold:
            best = record
            best_score = score

    if best is None:
        return None
    return Match(name=best.name, similarity=best_score, record_id=best.id)


class FaceMatcher:
    """Applies the similarity score against a gallery snapshot."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize matcher.

        Args:
            config: Configuration dictionary with recognition settings
        """
        self.recognition_config = config.get('recognition', {})
        self.threshold = float(self.recognition_config.get('similarity_threshold', DEFAULT_THRESHOLD))

    def match(self, query: Vector, gallery: IdentityGallery,
              threshold: Optional[float] = None) -> Optional[Match]:
        """Best match for the query in the gallery, or None."""
        if threshold is None:
            threshold = self.threshold
        return find_best_match(query, gallery.snapshot(), threshold)

    def score_all(self, query: Vector, gallery: IdentityGallery) -> List[Tuple[EmbeddingRecord, float]]:
        """Similarity of the query against every record, in gallery order."""
        return [(record, similarity(query, record.vector)) for record in gallery.snapshot()]
