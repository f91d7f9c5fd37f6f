"""
Contact table schema.

One row per submitted fingerprint. Rows are linked into identity groups
through ``linked_id``; see ``src.identity.resolver`` for the rules.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContactRecord(Base):
    """Contact row."""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=True, index=True)
    phone_number = Column(String(32), nullable=True, index=True)
    linked_id = Column(
        Integer,
        ForeignKey("contacts.id"),
        nullable=True,
        index=True,
    )
    link_precedence = Column(String(10), nullable=False, default="primary")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "link_precedence IN ('primary', 'secondary')",
            name="ck_contacts_link_precedence",
        ),
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contacts_secondary_linked",
        ),
        CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_contacts_identifier_present",
        ),
        Index("ix_contacts_created_at_id", "created_at", "id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ContactRecord(id={self.id}, email={self.email!r}, "
            f"phone_number={self.phone_number!r}, "
            f"precedence={self.link_precedence}, linked_id={self.linked_id})>"
        )
