"""
Contact identity resolution.

Links partial contact records (email and/or phone number) into identity
groups. Each group has exactly one primary contact, the oldest member,
and every other member is a secondary pointing directly at it.

Resolution strategy for a fingerprint:
1. Find contacts sharing the email or the phone number
2. If none, create a new primary and stop
3. Resolve every match to its group primary
4. The oldest primary (ties: smallest id) becomes the true primary
5. If the request bridges several groups, demote the other primaries and
   re-point their secondaries at the true primary in one atomic write
6. If no member already carries the fingerprint's fields, add a secondary
7. Assemble the consolidated view from the unified group

Steps 1-7 run inside a single store unit of work, locked on the
fingerprint's identifiers, and the whole attempt is retried when the store
reports a transient conflict.
"""

import asyncio
import logging

from src.exceptions import DataIntegrityWarning, InvalidInputError, TransientStoreFailure
from src.identity.store import ContactRepository, ContactStore
from src.identity.types import (
    Contact,
    Fingerprint,
    IdentityView,
    LinkPrecedence,
    MergeWrite,
    ResolutionResult,
)
from src.settings import settings

logger = logging.getLogger(__name__)


def build_identity_view(primary: Contact, members: list[Contact]) -> IdentityView:
    """
    Build the consolidated view for a group.

    Args:
        primary: The group's primary contact
        members: Group members ordered by (link precedence, created_at, id)

    Returns:
        IdentityView with the primary's email and phone first
    """
    emails: list[str] = []
    phone_numbers: list[str] = []
    if primary.email is not None:
        emails.append(primary.email)
    if primary.phone_number is not None:
        phone_numbers.append(primary.phone_number)

    secondary_ids = []
    for member in members:
        if member.email is not None and member.email not in emails:
            emails.append(member.email)
        if member.phone_number is not None and member.phone_number not in phone_numbers:
            phone_numbers.append(member.phone_number)
        if member.id != primary.id:
            secondary_ids.append(member.id)

    return IdentityView(
        primary_id=primary.id,
        emails=emails,
        phone_numbers=phone_numbers,
        secondary_ids=sorted(secondary_ids),
    )


class IdentityResolver:
    """Resolves fingerprints into consolidated identities against a ContactStore."""

    def __init__(
        self,
        store: ContactStore,
        *,
        max_attempts: int | None = None,
        retry_base_delay: float | None = None,
        retry_max_delay: float | None = None,
        max_link_hops: int | None = None,
    ):
        self.store = store
        self.max_attempts = max_attempts or settings.resolve_max_attempts
        self.retry_base_delay = (
            settings.resolve_retry_base_delay
            if retry_base_delay is None
            else retry_base_delay
        )
        self.retry_max_delay = (
            settings.resolve_retry_max_delay
            if retry_max_delay is None
            else retry_max_delay
        )
        self.max_link_hops = max_link_hops or settings.max_link_hops

    async def resolve(self, fingerprint: Fingerprint) -> ResolutionResult:
        """
        Resolve a fingerprint to its consolidated identity, updating the graph.

        Args:
            fingerprint: Email and/or phone number supplied by the caller

        Returns:
            ResolutionResult with the identity view and the changes made

        Raises:
            InvalidInputError: If neither email nor phone number is present
            TransientStoreFailure: If every attempt hit a transient conflict
            StoreError: On any other store failure
        """
        if fingerprint.is_empty:
            raise InvalidInputError(
                "Email or phone number must be provided to identify a contact."
            )

        attempt = 0
        delay = self.retry_base_delay
        while True:
            attempt += 1
            try:
                result = await self._resolve_once(fingerprint)
                break
            except TransientStoreFailure as e:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Resolve failed after %d attempts: %s", attempt, e
                    )
                    raise
                current_delay = min(delay, self.retry_max_delay)
                logger.warning(
                    "Transient store failure on attempt %d/%d, retrying in %.2fs: %s",
                    attempt,
                    self.max_attempts,
                    current_delay,
                    e,
                )
                await asyncio.sleep(current_delay)
                delay *= 2

        result.attempts = attempt
        for warning in result.warnings:
            logger.warning(
                "Data integrity warning (contact=%s): %s",
                warning.contact_id,
                warning.message,
            )
        return result

    async def _resolve_once(self, fingerprint: Fingerprint) -> ResolutionResult:
        async with self.store.unit_of_work(fingerprint.lock_keys()) as repo:
            matches = await repo.find_matching(
                fingerprint.email, fingerprint.phone_number
            )

            if not matches:
                contact = await repo.create(
                    email=fingerprint.email,
                    phone_number=fingerprint.phone_number,
                    link_precedence=LinkPrecedence.PRIMARY,
                )
                logger.info("Created primary contact %d", contact.id)
                return ResolutionResult(
                    view=build_identity_view(contact, [contact]),
                    created_ids=[contact.id],
                )

            warnings: list[DataIntegrityWarning] = []
            walked: dict[int, Contact] = {}
            candidates: dict[int, Contact] = {}
            for contact in matches:
                primary = await self._resolve_primary(repo, contact, warnings, walked)
                candidates.setdefault(primary.id, primary)

            ordered = sorted(candidates.values(), key=lambda c: c.sort_key)
            true_primary = ordered[0]

            relinked_ids = await self._merge(
                repo, true_primary, ordered[1:], list(walked.values()), warnings
            )

            created_ids = []
            members = await repo.find_group_members(true_primary.id)
            if not any(fingerprint.is_covered_by(m) for m in members):
                contact = await repo.create(
                    email=fingerprint.email,
                    phone_number=fingerprint.phone_number,
                    link_precedence=LinkPrecedence.SECONDARY,
                    linked_id=true_primary.id,
                )
                created_ids.append(contact.id)
                logger.info(
                    "Created secondary contact %d linked to primary %d",
                    contact.id,
                    true_primary.id,
                )

            members = await repo.find_group_members(true_primary.id)
            primary = next((m for m in members if m.id == true_primary.id), true_primary)

            return ResolutionResult(
                view=build_identity_view(primary, members),
                created_ids=created_ids,
                relinked_ids=relinked_ids,
                warnings=warnings,
            )

    async def _resolve_primary(
        self,
        repo: ContactRepository,
        contact: Contact,
        warnings: list[DataIntegrityWarning],
        walked: dict[int, Contact],
    ) -> Contact:
        """
        Follow linked_id until a primary is reached.

        Well-formed data needs at most one hop. Longer chains, cycles and
        dangling links stop the walk at the last contact found and record
        a DataIntegrityWarning. Every secondary passed through is added to
        ``walked`` so the merge can flatten it.
        """
        current = contact
        visited: set[int] = set()
        while not current.is_primary:
            walked.setdefault(current.id, current)
            if current.id in visited:
                warnings.append(
                    DataIntegrityWarning(
                        f"Cyclic link chain starting at contact {contact.id}",
                        contact_id=current.id,
                    )
                )
                break
            if len(visited) >= self.max_link_hops:
                warnings.append(
                    DataIntegrityWarning(
                        f"Link chain from contact {contact.id} exceeds "
                        f"{self.max_link_hops} hops",
                        contact_id=current.id,
                    )
                )
                break
            visited.add(current.id)

            parent = (
                await repo.find_by_id(current.linked_id)
                if current.linked_id is not None
                else None
            )
            if parent is None:
                warnings.append(
                    DataIntegrityWarning(
                        f"Contact {current.id} links to missing contact "
                        f"{current.linked_id}",
                        contact_id=current.id,
                    )
                )
                break
            if not parent.is_primary and len(visited) == 1:
                warnings.append(
                    DataIntegrityWarning(
                        f"Contact {current.id} links to secondary contact {parent.id}",
                        contact_id=current.id,
                    )
                )
            current = parent

        return current

    async def _merge(
        self,
        repo: ContactRepository,
        true_primary: Contact,
        others: list[Contact],
        walked: list[Contact],
        warnings: list[DataIntegrityWarning],
    ) -> list[int]:
        """
        Fold the groups headed by ``others`` into ``true_primary``'s group.

        Secondaries reached through a chain (``walked``) that do not already
        point at the true primary are re-pointed in the same write set, as
        is every contact linked, directly or transitively, to one of them.
        Returns the ids of every contact whose link changed.
        """
        writes: dict[int, MergeWrite] = {}

        def relink(contact_id: int) -> MergeWrite:
            return MergeWrite(
                id=contact_id,
                new_linked_id=true_primary.id,
                new_precedence=LinkPrecedence.SECONDARY,
            )

        if not true_primary.is_primary:
            warnings.append(
                DataIntegrityWarning(
                    f"Promoting contact {true_primary.id} back to primary",
                    contact_id=true_primary.id,
                )
            )
            writes[true_primary.id] = MergeWrite(
                id=true_primary.id,
                new_linked_id=None,
                new_precedence=LinkPrecedence.PRIMARY,
            )

        for demoted in others:
            group = [demoted] + [
                m for m in await repo.find_group_members(demoted.id) if m.id != demoted.id
            ]
            for member in group:
                if member.id == true_primary.id:
                    continue
                writes[member.id] = relink(member.id)

        for contact in walked:
            if contact.id == true_primary.id or contact.id in writes:
                continue
            if contact.linked_id != true_primary.id:
                writes[contact.id] = relink(contact.id)

        # Contacts hanging off a chained secondary point at a secondary too
        pending = [c.id for c in walked if c.id != true_primary.id]
        expanded: set[int] = set()
        while pending:
            contact_id = pending.pop()
            if contact_id in expanded:
                continue
            expanded.add(contact_id)
            for dependent in await repo.find_group_members(contact_id):
                if dependent.id in (contact_id, true_primary.id):
                    continue
                writes.setdefault(dependent.id, relink(dependent.id))
                pending.append(dependent.id)

        if not writes:
            return []

        await repo.apply_merge(list(writes.values()))
        relinked = sorted(w.id for w in writes.values() if w.id != true_primary.id)
        if others:
            logger.info(
                "Merged primaries %s into primary %d (%d contacts relinked)",
                [c.id for c in others],
                true_primary.id,
                len(relinked),
            )
        return relinked
