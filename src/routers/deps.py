"""Shared dependencies for routers."""

from typing import Annotated

from fastapi import Depends

from src.clients.contact_store import get_contact_store, get_identity_resolver
from src.identity.resolver import IdentityResolver
from src.services.contact_store_service import SqlContactStore

# Typed dependency aliases for use in endpoint signatures
ContactStoreDep = Annotated[SqlContactStore, Depends(get_contact_store)]
IdentityResolverDep = Annotated[IdentityResolver, Depends(get_identity_resolver)]
