"""Identify endpoint for contact identity reconciliation."""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Response, status

from src.exceptions import InvalidInputError
from src.routers.deps import IdentityResolverDep
from src.schemas.identify_schemas import (
    ContactSummary,
    IdentifyRequest,
    IdentifyResponse,
)
from src.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/identify", tags=["Identify"])

WARNINGS_HEADER = "X-Identity-Warnings"


@router.post("", response_model=IdentifyResponse, status_code=status.HTTP_200_OK)
async def identify(
    request: IdentifyRequest,
    response: Response,
    resolver: IdentityResolverDep,
) -> IdentifyResponse:
    """
    Resolve a contact identity from an email and/or phone number.

    Returns the consolidated identity: the primary contact id, every email
    and phone number linked to it (primary's first) and the ids of all
    secondary contacts. New contacts are created and identities merged as
    needed.
    """
    fingerprint = request.to_fingerprint()
    if fingerprint.is_empty:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either email or phoneNumber must be provided.",
        )

    try:
        result = await asyncio.wait_for(
            resolver.resolve(fingerprint), timeout=settings.resolve_timeout
        )
    except InvalidInputError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    except asyncio.TimeoutError as e:
        logger.warning("Identify request timed out after %.1fs", settings.resolve_timeout)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Identity resolution timed out",
        ) from e

    if result.warnings:
        response.headers[WARNINGS_HEADER] = str(len(result.warnings))

    if result.created_ids or result.merged:
        logger.info(
            "Identify resolved primary %d (created=%s, relinked=%s, attempts=%d)",
            result.view.primary_id,
            result.created_ids,
            result.relinked_ids,
            result.attempts,
        )

    return IdentifyResponse(contact=ContactSummary.from_view(result.view))
