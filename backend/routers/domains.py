"""
Email Domain API Router

Endpoints:
- GET /api/domains - Current email settings of the caller's organization
- POST /api/domains - Register a custom sending domain (owner)
- DELETE /api/domains - Remove the custom domain, revert to platform sender (owner)
- POST /api/domains/verify - Re-check the DNS proof records (owner)
- PATCH /api/domains/settings - Update reply-to, templates, or switch back to platform sender

Security:
- All endpoints require a bearer token
- The organization is the caller's own; owner-only operations return 403 for members
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from email_integration.email_client import EmailClient
from middleware.auth import get_caller
from routers.dependencies import get_email_client, get_identity_store, to_http_exception
from services.auth import CallerContext
from services.domain_verification import (
    DomainVerificationService,
    EmailSettingsPatch,
    RegisterDomainRequest,
)
from services.sender_identity import SenderIdentityStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/domains", tags=["Email Domains"])


def get_domain_service(
    store: SenderIdentityStore = Depends(get_identity_store),
    email_client: EmailClient = Depends(get_email_client)
) -> DomainVerificationService:
    return DomainVerificationService(store, email_client)


# ==================== ENDPOINTS ====================

@router.get("")
async def get_email_settings(
    caller: CallerContext = Depends(get_caller),
    service: DomainVerificationService = Depends(get_domain_service)
):
    """Current sender identity of the caller's organization."""
    try:
        identity = await service.get_settings(caller)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "load_email_settings")

    return {"settings": identity.model_dump(mode="json")}


@router.post("")
async def register_domain(
    request: RegisterDomainRequest,
    caller: CallerContext = Depends(get_caller),
    service: DomainVerificationService = Depends(get_domain_service)
):
    """
    Register the domain of `from_email` with the email provider.

    Returns the DNS records the domain owner has to publish. Any previously
    registered domain of the organization is removed at the provider.

    **Auth:** Bearer token, organization owner
    """
    try:
        result = await service.register(caller, request)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "register_domain")

    return result.to_dict()


@router.delete("")
async def remove_domain(
    caller: CallerContext = Depends(get_caller),
    service: DomainVerificationService = Depends(get_domain_service)
):
    """
    Remove the custom domain and send from the platform address again.

    Reply-to and template settings are kept.
    """
    try:
        await service.remove(caller)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "remove_domain")

    return {"success": True}


@router.post("/verify")
async def verify_domain(
    caller: CallerContext = Depends(get_caller),
    service: DomainVerificationService = Depends(get_domain_service)
):
    """Ask the provider to re-check the DNS records and store the result."""
    try:
        result = await service.verify(caller)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "verify_domain")

    return result.to_dict()


@router.patch("/settings")
async def update_email_settings(
    patch: EmailSettingsPatch,
    caller: CallerContext = Depends(get_caller),
    service: DomainVerificationService = Depends(get_domain_service)
):
    """
    Update reply-to and email templates.

    `mode: "platform_default"` switches back to the platform sender without
    deleting the custom domain. Empty strings clear a field.
    """
    try:
        identity = await service.update_settings(caller, patch)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "update_email_settings")

    return {"success": True, "settings": identity.model_dump(mode="json")}
