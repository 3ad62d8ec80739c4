"""
Matching service comparing face embeddings by Euclidean distance.
"""

import logging
import math
from typing import Optional, Sequence

import numpy as np

from src.config import settings
from src.models.internal_models import Identity, MatchResult

logger = logging.getLogger(__name__)


class MatchingService:
    """Nearest-neighbour matching of a query embedding against stored identities."""

    def __init__(self, threshold: float = 0.6):
        """
        Initialize the matching service.

        Args:
            threshold: Maximum (exclusive) Euclidean distance accepted as a match.
                Depends on the scale of the upstream embedding model.
        """
        if threshold <= 0.0:
            raise ValueError(f"Threshold must be greater than 0.0, got: {threshold}")
        self.threshold = threshold

    @staticmethod
    def to_embedding(values: Sequence[float]) -> np.ndarray:
        """
        Convert a numeric sequence into a 1-D float64 embedding.

        Raises:
            ValueError: If the values are empty, nested, non-numeric or not finite
        """
        if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple, np.ndarray)):
            raise ValueError("Embedding must be a sequence of numbers")
        if isinstance(values, np.ndarray):
            if values.dtype.kind not in "iuf":
                raise ValueError(f"Embedding values must be numbers, got dtype {values.dtype}")
        else:
            for value in values:
                if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
                    raise ValueError(f"Embedding values must be numbers, got {type(value).__name__}")

        try:
            embedding = np.asarray(values, dtype=np.float64)
        except OverflowError as e:
            raise ValueError(f"Embedding values out of range: {e}")

        if embedding.ndim != 1 or embedding.shape[0] == 0:
            raise ValueError(f"Embedding must be a non-empty 1-D vector, got shape {embedding.shape}")
        if not np.isfinite(embedding).all():
            raise ValueError("Embedding values must be finite")
        return embedding

    def compute_distance(self, embedding1: np.ndarray, embedding2: np.ndarray) -> float:
        """
        Compute the Euclidean distance between two embeddings.

        Embeddings of different lengths are incomparable and yield ``math.inf``,
        which no threshold accepts.
        """
        if embedding1.shape != embedding2.shape:
            return math.inf
        diff = embedding1 - embedding2
        return float(np.sqrt(np.sum(diff * diff)))

    def find_best_match(
        self,
        query: np.ndarray,
        candidates: Sequence[Identity],
        threshold: Optional[float] = None
    ) -> MatchResult:
        """
        Find the stored identity closest to ``query``.

        Args:
            query: Query embedding
            candidates: Identities to scan, in iteration order
            threshold: Override for the configured threshold

        Returns:
            MatchResult with the closest identity if its distance is strictly
            below the threshold, otherwise with ``identity=None``. The minimum
            distance is reported in both cases (``inf`` when nothing is
            comparable). Ties go to the first candidate in iteration order.
        """
        threshold = self.threshold if threshold is None else threshold
        if not candidates:
            return MatchResult(identity=None, distance=math.inf)

        distances = np.full(len(candidates), np.inf)
        comparable = [
            index for index, candidate in enumerate(candidates)
            if candidate.embedding.shape == query.shape
        ]
        if comparable:
            matrix = np.stack([candidates[index].embedding for index in comparable])
            diff = matrix - query
            distances[comparable] = np.sqrt(np.sum(diff * diff, axis=1))
            # NaN would win argmin; treat it as incomparable
            distances = np.where(np.isnan(distances), np.inf, distances)

        # argmin returns the first occurrence of the minimum
        best_index = int(np.argmin(distances))
        best_distance = float(distances[best_index])

        logger.debug(
            f"Scanned {len(candidates)} candidates ({len(comparable)} comparable): "
            f"min distance={best_distance:.4f}, threshold={threshold}"
        )

        if best_distance < threshold:
            return MatchResult(identity=candidates[best_index], distance=best_distance)
        return MatchResult(identity=None, distance=best_distance)


# Global instance for reuse across requests
_matching_service: Optional[MatchingService] = None


def get_matching_service() -> MatchingService:
    """
    Get the global matching service instance.

    Returns:
        MatchingService: The global matching service instance
    """
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService(threshold=settings.match_threshold)
    return _matching_service
