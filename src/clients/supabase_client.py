"""Supabase client for identity storage."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
from supabase import create_client, Client
from postgrest.exceptions import APIError

from ..config import settings
from ..models.internal_models import Identity
from .base import IdentityStore, StorageError

logger = logging.getLogger(__name__)

# Rows inspected when inferring the embedding dimension
DIMENSION_SCAN_ROWS = 20


class SupabaseClient:
    """Lazily created Supabase client."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        """Initialize Supabase client with configuration."""
        self._client: Optional[Client] = None
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_key

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client

    async def health_check(self, table: str) -> bool:
        """Check if database connection is healthy."""
        try:
            await asyncio.to_thread(
                lambda: self.client.table(table).select("id", count="exact").limit(0).execute()
            )
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


def _parse_embedding(raw: Any) -> np.ndarray:
    """
    Decode a stored embedding; pgvector columns come back as '[0.1,0.2,...]' strings.

    Raises:
        ValueError: If the value is not a non-empty 1-D vector of finite numbers
    """
    if isinstance(raw, str):
        raw = json.loads(raw)
    embedding = np.array(raw, dtype=np.float64)
    if embedding.ndim != 1 or embedding.shape[0] == 0:
        raise ValueError(f"Stored embedding must be a non-empty 1-D vector, got shape {embedding.shape}")
    if not np.isfinite(embedding).all():
        raise ValueError("Stored embedding contains null or non-finite values")
    return embedding


def _parse_timestamp(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(raw.replace('Z', '+00:00'))


class SupabaseIdentityStore(IdentityStore):
    """
    Identity store backed by a Supabase ``users`` table.

    Expected columns: ``id`` and ``created_at`` (database defaults), ``name``
    (text) and ``face_embedding`` (float8[], jsonb or vector).
    """

    def __init__(self, supabase_client: Optional[SupabaseClient] = None, table: Optional[str] = None):
        """Initialize store with Supabase client."""
        self.client = supabase_client or SupabaseClient()
        self.table = table or settings.supabase_table

    def _row_to_identity(self, row: Dict[str, Any]) -> Identity:
        return Identity(
            id=str(row["id"]),
            name=row["name"],
            embedding=_parse_embedding(row["face_embedding"]),
            created_at=_parse_timestamp(row.get("created_at"))
        )

    async def insert(self, name: str, embedding: np.ndarray) -> Identity:
        """Insert a new identity row."""
        self.check_insert_args(name, embedding)
        # id and created_at are assigned by the database
        row = {
            "name": name,
            # Convert numpy array to list for JSON serialization
            "face_embedding": embedding.tolist()
        }

        try:
            result = await asyncio.to_thread(
                lambda: self.client.client.table(self.table).insert(row).execute()
            )
        except APIError as e:
            logger.error(f"Database error inserting identity: {e}")
            raise StorageError(f"Failed to insert identity: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error inserting identity: {e}")
            raise StorageError(f"Failed to insert identity: {e}") from e

        if not result.data:
            raise StorageError("Insert returned no rows")

        try:
            identity = self._row_to_identity(result.data[0])
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.error(f"Inserted row could not be read back: {e}")
            raise StorageError(f"Insert returned a malformed row: {e}") from e
        logger.info(f"Successfully inserted identity {identity.id}")
        return identity

    async def list_all(self) -> List[Identity]:
        """Fetch every identity for a linear scan."""
        try:
            result = await asyncio.to_thread(
                lambda: self.client.client.table(self.table)
                .select("id, name, face_embedding, created_at")
                .order("created_at")
                .execute()
            )
        except APIError as e:
            logger.error(f"Database error listing identities: {e}")
            raise StorageError(f"Failed to list identities: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error listing identities: {e}")
            raise StorageError(f"Failed to list identities: {e}") from e

        identities = []
        for row in result.data or []:
            try:
                identities.append(self._row_to_identity(row))
            except (KeyError, TypeError, ValueError, OverflowError) as e:
                logger.warning(f"Skipping malformed identity row {row.get('id')}: {e}")
        return identities

    async def get_embedding_dimension(self) -> Optional[int]:
        """
        Length of the earliest stored embedding.

        Malformed rows are skipped, as in ``list_all``. Returns None when no
        well-formed row is found among the earliest ``DIMENSION_SCAN_ROWS``.
        """
        try:
            result = await asyncio.to_thread(
                lambda: self.client.client.table(self.table)
                .select("id, face_embedding")
                .order("created_at")
                .limit(DIMENSION_SCAN_ROWS)
                .execute()
            )
        except APIError as e:
            logger.error(f"Database error reading embedding dimension: {e}")
            raise StorageError(f"Failed to read embedding dimension: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error reading embedding dimension: {e}")
            raise StorageError(f"Failed to read embedding dimension: {e}") from e

        rows = result.data or []
        for row in rows:
            try:
                return int(_parse_embedding(row["face_embedding"]).shape[0])
            except (KeyError, TypeError, ValueError, OverflowError) as e:
                logger.warning(f"Skipping malformed identity row {row.get('id')}: {e}")
        if rows:
            logger.warning(f"No well-formed embedding in the first {len(rows)} rows, dimension not enforced")
        return None

    async def health_check(self) -> bool:
        return await self.client.health_check(self.table)
