"""
Authentication service for face registration and login workflows.

This module provides the core business logic for:
- Registering a named identity with its face embedding
- Logging in by nearest-neighbour search over all registered embeddings
- Gating login attempts per client through the rate limiter
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from src.clients.base import DimensionMismatchError, IdentityStore, StorageError
from src.clients.memory_store import InMemoryIdentityStore
from src.clients.supabase_client import SupabaseIdentityStore
from src.config import settings
from src.models.api_models import LoginFaceRequest, RegisterFaceRequest
from src.models.internal_models import Identity
from src.services.matching_service import MatchingService, get_matching_service
from src.services.rate_limiter import (
    AttemptTracker,
    InMemoryAttemptTracker,
    RateLimiter,
    RedisAttemptTracker
)

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Base exception for authentication service errors."""
    pass


class ValidationError(AuthenticationError):
    """Raised for malformed or missing input."""
    pass


class RateLimitExceeded(AuthenticationError):
    """Raised when a client has used up its login attempts for the window."""

    def __init__(self, retry_after_seconds: float, window_minutes: int):
        super().__init__(f"Too many login attempts, retry after {retry_after_seconds:.0f}s")
        self.retry_after_seconds = retry_after_seconds
        self.window_minutes = window_minutes


class NotRecognized(AuthenticationError):
    """Raised when no stored face is close enough to the query."""

    def __init__(self, distance: float):
        super().__init__(f"No identity within threshold (closest distance {distance:.4f})")
        self.distance = distance


__all__ = [
    "AuthenticationError",
    "ValidationError",
    "RateLimitExceeded",
    "NotRecognized",
    "StorageError",
    "LoginResult",
    "AuthenticationService",
    "get_auth_service"
]


@dataclass(frozen=True)
class LoginResult:
    """Successful login: the matched identity and its distance to the query."""

    identity: Identity
    distance: float


class AuthenticationService:
    """
    Core authentication service handling registration and login workflows.

    Orchestrates input validation, identity storage, embedding matching and
    login rate limiting.
    """

    def __init__(
        self,
        store: Optional[IdentityStore] = None,
        matcher: Optional[MatchingService] = None,
        rate_limiter: Optional[RateLimiter] = None,
        embedding_dimension: Optional[int] = None
    ):
        """
        Initialize authentication service.

        Args:
            store: Identity store. If None, an in-memory store is used.
            matcher: Matching service. If None, one is built from settings.
            rate_limiter: Login rate limiter. If None, one is built from settings.
            embedding_dimension: Required embedding length. If None, the length
                of the first stored embedding is enforced.
        """
        self.store = store if store is not None else InMemoryIdentityStore()
        self.matcher = matcher if matcher is not None else get_matching_service()
        self.rate_limiter = rate_limiter if rate_limiter is not None else _build_rate_limiter()
        self.embedding_dimension = embedding_dimension

        logger.info(
            f"Authentication service initialized with match threshold: {self.matcher.threshold}, "
            f"rate limit: {self.rate_limiter.max_attempts} per {self.rate_limiter.window_seconds}s"
        )

    async def _expected_dimension(self) -> Optional[int]:
        if self.embedding_dimension is not None:
            return self.embedding_dimension
        return await self.store.get_embedding_dimension()

    async def register(self, name: Any, embedding: Any) -> Identity:
        """
        Register a new identity.

        Args:
            name: Display name supplied by the caller
            embedding: Face embedding supplied by the caller

        Returns:
            The stored identity, including its generated id

        Raises:
            ValidationError: If the name or embedding is missing or malformed,
                or the embedding length differs from stored embeddings
            StorageError: If the identity could not be stored
        """
        try:
            request = RegisterFaceRequest(name=name, embedding=embedding)
            vector = self.matcher.to_embedding(request.embedding)
        except (PydanticValidationError, ValueError) as e:
            logger.info(f"Rejected registration input: {e}")
            raise ValidationError("Name and embedding are required") from e

        try:
            expected = await self._expected_dimension()
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error reading embedding dimension: {e}")
            raise StorageError(f"Failed to read embedding dimension: {e}") from e
        if expected is not None and vector.shape[0] != expected:
            logger.info(f"Rejected registration with {vector.shape[0]} values, expected {expected}")
            raise ValidationError(f"Embedding must have {expected} values")

        try:
            identity = await self.store.insert(request.name, vector)
        except DimensionMismatchError as e:
            raise ValidationError(f"Embedding must have {e.expected} values") from e
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error storing identity: {e}")
            raise StorageError(f"Failed to store identity: {e}") from e

        logger.info(f"Registered identity {identity.id} ({vector.shape[0]}-d embedding)")
        return identity

    async def login(self, embedding: Any, client_key: str) -> LoginResult:
        """
        Authenticate a face embedding against all registered identities.

        Complete login workflow:
        1. Gate the attempt through the rate limiter
        2. Validate the embedding
        3. Snapshot stored identities and find the nearest one
        4. Return the match or raise NotRecognized

        Args:
            embedding: Face embedding supplied by the caller
            client_key: Client identifier used for rate limiting (source IP)

        Returns:
            LoginResult with the matched identity and its distance

        Raises:
            RateLimitExceeded: If the client has no attempts left in the window
            ValidationError: If the embedding is missing or malformed
            NotRecognized: If no stored embedding is within the threshold
            StorageError: If the store or attempt tracker is unavailable
        """
        if not await self.rate_limiter.check_and_record(client_key):
            retry_after = await self.rate_limiter.retry_after(client_key)
            raise RateLimitExceeded(retry_after, self.rate_limiter.window_minutes)

        try:
            request = LoginFaceRequest(embedding=embedding)
            query = self.matcher.to_embedding(request.embedding)
        except (PydanticValidationError, ValueError) as e:
            logger.info(f"Rejected login input from {client_key}: {e}")
            raise ValidationError("Embedding is required") from e

        try:
            candidates = await self.store.list_all()
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error listing identities: {e}")
            raise StorageError(f"Failed to list identities: {e}") from e

        result = self.matcher.find_best_match(query, candidates)

        if not result.matched:
            logger.info(
                f"Face not recognized for {client_key}: closest distance={result.distance:.4f}, "
                f"threshold={self.matcher.threshold}, candidates={len(candidates)}"
            )
            raise NotRecognized(result.distance)

        logger.info(
            f"Login matched identity {result.identity.id} for {client_key}: "
            f"distance={result.distance:.4f}, threshold={self.matcher.threshold}"
        )
        return LoginResult(identity=result.identity, distance=result.distance)

    async def health_check(self) -> bool:
        return await self.store.health_check()

    async def close(self) -> None:
        await self.rate_limiter.close()


def _build_identity_store() -> IdentityStore:
    if settings.storage_backend == "supabase":
        return SupabaseIdentityStore()
    return InMemoryIdentityStore()


def _build_attempt_tracker() -> AttemptTracker:
    if settings.rate_limit_backend == "redis":
        return RedisAttemptTracker(settings.redis_url)
    return InMemoryAttemptTracker(
        max_keys=settings.rate_limit_max_tracked_clients,
        sweep_interval=settings.rate_limit_sweep_interval
    )


def _build_rate_limiter() -> RateLimiter:
    return RateLimiter(
        tracker=_build_attempt_tracker(),
        window_seconds=settings.rate_limit_window_seconds,
        max_attempts=settings.rate_limit_max_attempts
    )


# Global service instance
_auth_service: Optional[AuthenticationService] = None


def get_auth_service() -> AuthenticationService:
    """
    Get the global authentication service instance.

    Returns:
        AuthenticationService: The global authentication service instance
    """
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthenticationService(
            store=_build_identity_store(),
            matcher=get_matching_service(),
            rate_limiter=_build_rate_limiter(),
            embedding_dimension=settings.embedding_dimension
        )
    return _auth_service
