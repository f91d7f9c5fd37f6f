"""
Identity graph integrity checks.

Reports stored contacts that break the grouping rules the resolver
maintains. Read-only: repairs happen through normal resolution, which
flattens chains and re-elects primaries when the affected identifiers are
next submitted.
"""

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

from src.identity.types import Contact


class IssueKind(str, Enum):
    """Kinds of integrity violations."""

    INVALID_LINK = "invalid_link"  # secondary without a link, or primary with one
    DANGLING_LINK = "dangling_link"  # linked contact missing or deleted
    CHAINED_SECONDARY = "chained_secondary"  # linked to another secondary
    PRIMARY_NOT_OLDEST = "primary_not_oldest"
    DUPLICATE_PAIR = "duplicate_pair"


@dataclass
class IntegrityIssue:
    """A single integrity violation."""

    kind: IssueKind
    contact_id: int
    detail: str


def audit_contacts(contacts: list[Contact]) -> list[IntegrityIssue]:
    """
    Check a snapshot of non-deleted contacts against the grouping rules.

    Args:
        contacts: Every non-deleted contact

    Returns:
        Issues ordered by contact id
    """
    issues: list[IntegrityIssue] = []
    by_id = {c.id: c for c in contacts}
    groups: dict[int, list[Contact]] = defaultdict(list)

    for contact in contacts:
        if contact.is_primary:
            if contact.linked_id is not None:
                issues.append(
                    IntegrityIssue(
                        IssueKind.INVALID_LINK,
                        contact.id,
                        f"primary has linked_id={contact.linked_id}",
                    )
                )
            groups[contact.id].append(contact)
            continue

        if contact.linked_id is None:
            issues.append(
                IntegrityIssue(
                    IssueKind.INVALID_LINK, contact.id, "secondary has no linked_id"
                )
            )
            continue

        target = by_id.get(contact.linked_id)
        if target is None:
            issues.append(
                IntegrityIssue(
                    IssueKind.DANGLING_LINK,
                    contact.id,
                    f"linked contact {contact.linked_id} does not exist",
                )
            )
        elif not target.is_primary:
            issues.append(
                IntegrityIssue(
                    IssueKind.CHAINED_SECONDARY,
                    contact.id,
                    f"linked contact {target.id} is a secondary",
                )
            )
        else:
            groups[target.id].append(contact)

    for primary_id, members in groups.items():
        oldest = min(members, key=lambda c: c.sort_key)
        if oldest.id != primary_id:
            issues.append(
                IntegrityIssue(
                    IssueKind.PRIMARY_NOT_OLDEST,
                    primary_id,
                    f"member {oldest.id} is older than the primary",
                )
            )

        seen: dict[tuple[str | None, str | None], int] = {}
        for member in sorted(members, key=lambda c: c.sort_key):
            pair = (member.email, member.phone_number)
            if pair in seen:
                issues.append(
                    IntegrityIssue(
                        IssueKind.DUPLICATE_PAIR,
                        member.id,
                        f"same email/phone as contact {seen[pair]}",
                    )
                )
            else:
                seen[pair] = member.id

    issues.sort(key=lambda i: (i.contact_id, i.kind.value))
    return issues
