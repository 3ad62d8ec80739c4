"""Storage interface for registered face identities."""

from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from ..models.internal_models import Identity


class StorageError(Exception):
    """Raised when the identity backend cannot be reached or rejects an operation."""
    pass


class DimensionMismatchError(ValueError):
    """Raised when an embedding length differs from the stored embeddings."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding must have {expected} values, got {actual}")
        self.expected = expected
        self.actual = actual


class IdentityStore(ABC):
    """
    Candidate source for face matching.

    ``list_all`` is a linear snapshot of every identity; an indexed
    nearest-neighbour backend can replace it without touching callers.
    """

    @abstractmethod
    async def insert(self, name: str, embedding: np.ndarray) -> Identity:
        """Persist a new identity in a single write and return it with its id."""

    @abstractmethod
    async def list_all(self) -> List[Identity]:
        """Return every stored identity."""

    @abstractmethod
    async def get_embedding_dimension(self) -> Optional[int]:
        """Return the length of stored embeddings, or None if nothing is stored."""

    async def health_check(self) -> bool:
        return True

    @staticmethod
    def check_insert_args(name: str, embedding: np.ndarray) -> None:
        """Raise ValueError for an empty name or a non-vector embedding."""
        if not name or not name.strip():
            raise ValueError("Name must not be empty")
        if not isinstance(embedding, np.ndarray) or embedding.ndim != 1 or embedding.shape[0] == 0:
            raise ValueError("Embedding must be a non-empty 1-D numeric vector")
