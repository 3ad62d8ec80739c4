"""Identity store clients."""

from src.clients.base import (
    IdentityStore,
    StorageError,
    DimensionMismatchError
)

from src.clients.memory_store import InMemoryIdentityStore

from src.clients.supabase_client import (
    SupabaseClient,
    SupabaseIdentityStore
)

__all__ = [
    "IdentityStore",
    "StorageError",
    "DimensionMismatchError",
    "InMemoryIdentityStore",
    "SupabaseClient",
    "SupabaseIdentityStore"
]
