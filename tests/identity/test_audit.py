"""Tests for identity graph integrity checks."""

from src.identity.audit import IssueKind, audit_contacts
from src.identity.types import Contact, LinkPrecedence
from tests.conftest import at


def primary(contact_id: int, email: str | None, phone: str | None, minute: int) -> Contact:
    return Contact(
        id=contact_id,
        email=email,
        phone_number=phone,
        link_precedence=LinkPrecedence.PRIMARY,
        linked_id=None,
        created_at=at(minute),
        updated_at=at(minute),
    )


def secondary(
    contact_id: int, email: str | None, phone: str | None, linked_id: int | None, minute: int
) -> Contact:
    return Contact(
        id=contact_id,
        email=email,
        phone_number=phone,
        link_precedence=LinkPrecedence.SECONDARY,
        linked_id=linked_id,
        created_at=at(minute),
        updated_at=at(minute),
    )


class TestAuditContacts:
    def test_clean_graph(self) -> None:
        contacts = [
            primary(1, "a@x.com", "111", 0),
            secondary(2, "b@x.com", "111", 1, 1),
            primary(3, "c@x.com", None, 2),
        ]

        assert audit_contacts(contacts) == []

    def test_empty_snapshot(self) -> None:
        assert audit_contacts([]) == []

    def test_chained_secondary(self) -> None:
        contacts = [
            primary(1, "a@x.com", None, 0),
            secondary(2, "b@x.com", None, 1, 1),
            secondary(3, "c@x.com", None, 2, 2),
        ]

        issues = audit_contacts(contacts)

        assert [(i.kind, i.contact_id) for i in issues] == [
            (IssueKind.CHAINED_SECONDARY, 3)
        ]

    def test_dangling_link(self) -> None:
        issues = audit_contacts([secondary(2, "b@x.com", None, 99, 1)])

        assert [(i.kind, i.contact_id) for i in issues] == [(IssueKind.DANGLING_LINK, 2)]
        assert "99" in issues[0].detail

    def test_invalid_links(self) -> None:
        bad_primary = Contact(
            id=1,
            email="a@x.com",
            phone_number=None,
            link_precedence=LinkPrecedence.PRIMARY,
            linked_id=5,
            created_at=at(0),
            updated_at=at(0),
        )
        contacts = [bad_primary, secondary(2, "b@x.com", None, None, 1)]

        issues = audit_contacts(contacts)

        assert [(i.kind, i.contact_id) for i in issues] == [
            (IssueKind.INVALID_LINK, 1),
            (IssueKind.INVALID_LINK, 2),
        ]

    def test_primary_not_oldest(self) -> None:
        contacts = [
            primary(1, "a@x.com", None, 10),
            secondary(2, "b@x.com", None, 1, 0),
        ]

        issues = audit_contacts(contacts)

        assert [(i.kind, i.contact_id) for i in issues] == [
            (IssueKind.PRIMARY_NOT_OLDEST, 1)
        ]

    def test_duplicate_pair_reports_newer_member(self) -> None:
        contacts = [
            primary(1, "a@x.com", "111", 0),
            secondary(2, "b@x.com", "222", 1, 1),
            secondary(3, "b@x.com", "222", 1, 2),
        ]

        issues = audit_contacts(contacts)

        assert [(i.kind, i.contact_id) for i in issues] == [
            (IssueKind.DUPLICATE_PAIR, 3)
        ]
