"""
Contact identity resolution.

This module handles:
- Matching fingerprints (email / phone number) to stored contacts
- Electing the primary contact of an identity group
- Merging identity groups bridged by a request
- Integrity auditing of stored identity groups
"""

from src.identity.audit import IntegrityIssue, IssueKind, audit_contacts
from src.identity.resolver import IdentityResolver, build_identity_view
from src.identity.store import ContactRepository, ContactStore
from src.identity.types import (
    Contact,
    Fingerprint,
    IdentityView,
    LinkPrecedence,
    MergeWrite,
    ResolutionResult,
)

__all__ = [
    "IdentityResolver",
    "build_identity_view",
    "ContactRepository",
    "ContactStore",
    "Contact",
    "Fingerprint",
    "IdentityView",
    "LinkPrecedence",
    "MergeWrite",
    "ResolutionResult",
    "IntegrityIssue",
    "IssueKind",
    "audit_contacts",
]
