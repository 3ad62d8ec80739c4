"""Internal data models for the face authentication microservice."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np


@dataclass(frozen=True, eq=False)
class Identity:
    """A registered face identity."""

    id: str  # System-generated UUID
    name: str
    embedding: np.ndarray  # 1-D face embedding, length fixed by the upstream model
    created_at: datetime

    def __post_init__(self):
        """Validate embedding shape and values after initialization."""
        if self.embedding.ndim != 1 or self.embedding.shape[0] == 0:
            raise ValueError(f"Embedding must be a non-empty 1-D vector, got shape {self.embedding.shape}")
        if not np.isfinite(self.embedding).all():
            raise ValueError("Embedding values must be finite")
        if not self.name:
            raise ValueError("Identity name must not be empty")


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a nearest-neighbour scan over stored identities."""

    identity: Optional[Identity]
    distance: float

    @property
    def matched(self) -> bool:
        return self.identity is not None
