"""
Contact store contract required by the identity resolver.

The resolver never talks to a database directly. It opens one unit of work
per resolve attempt and performs every read and write through the
repository it yields. Implementations guarantee that:

- All operations inside a unit of work commit together or not at all
  (an exception, including cancellation, rolls everything back).
- Two units of work whose lock keys intersect never interleave their
  read-decide-write sequences.
- Contention that the caller may safely retry surfaces as
  ``TransientStoreFailure``; every other failure as ``StoreError``.
"""

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from src.identity.types import Contact, LinkPrecedence, MergeWrite


class ContactRepository(Protocol):
    """Operations available inside a single unit of work."""

    async def find_matching(
        self, email: str | None, phone_number: str | None
    ) -> list[Contact]:
        """Contacts sharing the email or the phone number, oldest first."""
        ...

    async def find_by_id(self, contact_id: int) -> Contact | None: ...

    async def find_group_members(self, primary_id: int) -> list[Contact]:
        """The primary plus every contact linked to it."""
        ...

    async def create(
        self,
        *,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
    ) -> Contact: ...

    async def apply_merge(self, writes: Sequence[MergeWrite]) -> None:
        """Apply every write or none of them."""
        ...

    async def list_contacts(self) -> list[Contact]: ...


class ContactStore(Protocol):
    """Factory for units of work over the contact table."""

    def unit_of_work(
        self, lock_keys: Sequence[str] = ()
    ) -> AbstractAsyncContextManager[ContactRepository]: ...

    async def ping(self) -> bool: ...
