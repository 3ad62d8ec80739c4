"""In-process identity store for single-instance deployments and tests."""

import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

import numpy as np

from .base import DimensionMismatchError, IdentityStore
from ..models.internal_models import Identity

logger = logging.getLogger(__name__)


class InMemoryIdentityStore(IdentityStore):
    """Identity store backed by a list, guarded by a lock for concurrent inserts."""

    def __init__(self):
        self._identities: List[Identity] = []
        self._lock = threading.Lock()

    async def insert(self, name: str, embedding: np.ndarray) -> Identity:
        self.check_insert_args(name, embedding)
        identity = Identity(
            id=str(uuid4()),
            name=name,
            embedding=np.array(embedding, dtype=np.float64),  # copy, callers may reuse their array
            created_at=datetime.now(timezone.utc)
        )
        with self._lock:
            if self._identities:
                expected = self._identities[0].embedding.shape[0]
                if identity.embedding.shape[0] != expected:
                    raise DimensionMismatchError(expected, identity.embedding.shape[0])
            self._identities.append(identity)
        logger.info(f"Stored identity {identity.id}")
        return identity

    async def list_all(self) -> List[Identity]:
        with self._lock:
            return list(self._identities)

    async def get_embedding_dimension(self) -> Optional[int]:
        with self._lock:
            if not self._identities:
                return None
            return int(self._identities[0].embedding.shape[0])

    def __len__(self) -> int:
        return len(self._identities)
