"""Domain types for contact identity resolution."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from src.exceptions import DataIntegrityWarning


class LinkPrecedence(str, Enum):
    """Role of a contact within its identity group."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class Contact:
    """A stored contact record, detached from any database session."""

    id: int
    email: str | None
    phone_number: str | None
    link_precedence: LinkPrecedence
    linked_id: int | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Age ordering: oldest first, smaller id wins ties on created_at."""
        return (self.created_at, self.id)


@dataclass(frozen=True)
class Fingerprint:
    """
    Partial identity supplied by a caller.

    Empty strings are treated as absent so that ``{"email": ""}`` never
    matches contacts stored without an email.
    """

    email: str | None = None
    phone_number: str | None = None

    def __post_init__(self) -> None:
        if self.email == "":
            object.__setattr__(self, "email", None)
        if self.phone_number == "":
            object.__setattr__(self, "phone_number", None)

    @property
    def is_empty(self) -> bool:
        return self.email is None and self.phone_number is None

    def lock_keys(self) -> list[str]:
        """Sorted keys identifying every value this fingerprint can touch."""
        keys = []
        if self.email is not None:
            keys.append(f"email:{self.email}")
        if self.phone_number is not None:
            keys.append(f"phone:{self.phone_number}")
        return sorted(keys)

    def is_covered_by(self, contact: Contact) -> bool:
        """True if ``contact`` carries every field present in this fingerprint."""
        if self.email is not None and contact.email != self.email:
            return False
        if self.phone_number is not None and contact.phone_number != self.phone_number:
            return False
        return True


@dataclass(frozen=True)
class MergeWrite:
    """One row update applied by a merge."""

    id: int
    new_linked_id: int | None
    new_precedence: LinkPrecedence


@dataclass
class IdentityView:
    """Consolidated identity returned to callers."""

    primary_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_ids: list[int] = field(default_factory=list)


@dataclass
class ResolutionResult:
    """Result of a resolve call: the view plus what the call changed."""

    view: IdentityView
    created_ids: list[int] = field(default_factory=list)
    relinked_ids: list[int] = field(default_factory=list)
    warnings: list[DataIntegrityWarning] = field(default_factory=list)
    attempts: int = 1

    @property
    def merged(self) -> bool:
        return bool(self.relinked_ids)
