"""Dependency injection provider for the contact store and identity resolver."""

from src.identity.resolver import IdentityResolver
from src.services.contact_store_service import SqlContactStore, create_contact_store

_contact_store: SqlContactStore | None = None


def get_contact_store() -> SqlContactStore:
    """Get or create the SqlContactStore singleton."""
    global _contact_store
    if _contact_store is None:
        _contact_store = create_contact_store()
    return _contact_store


async def close_contact_store() -> None:
    """Dispose the singleton's engine, if one was created."""
    global _contact_store
    if _contact_store is not None:
        await _contact_store.close()
        _contact_store = None


def get_identity_resolver() -> IdentityResolver:
    """Create an IdentityResolver bound to the shared contact store."""
    return IdentityResolver(get_contact_store())
