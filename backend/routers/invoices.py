"""
Invoice API Router

Endpoints:
- POST /api/invoices/{invoice_id}/send - Email a finalized invoice
- PATCH /api/invoices/{invoice_id}/status - Manual status change
- GET /api/invoices/{invoice_id}/email-preview - Prefilled subject/body for the send form

Security:
- All endpoints require a bearer token and membership in the invoice's organization
- Status changes are logged for audit trail (invoice.status_changed events)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from email_integration.email_client import EmailClient
from middleware.auth import get_caller
from routers.dependencies import (
    get_attachment_retriever,
    get_email_client,
    get_identity_store,
    get_invoice_repository,
    to_http_exception,
)
from services.auth import CallerContext
from services.invoices import (
    InvoiceRepository,
    InvoiceService,
    SendInvoiceRequest,
    StatusUpdateRequest,
)
from services.sender_identity import SenderIdentityStore
from storage.attachments import AttachmentRetriever

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def get_invoice_service(
    repository: InvoiceRepository = Depends(get_invoice_repository),
    store: SenderIdentityStore = Depends(get_identity_store),
    email_client: EmailClient = Depends(get_email_client),
    retriever: AttachmentRetriever = Depends(get_attachment_retriever)
) -> InvoiceService:
    return InvoiceService(repository, store, email_client, retriever)


# ==================== ENDPOINTS ====================

@router.post("/{invoice_id}/send")
async def send_invoice(
    invoice_id: str,
    request: SendInvoiceRequest,
    caller: CallerContext = Depends(get_caller),
    service: InvoiceService = Depends(get_invoice_service)
):
    """
    Email an invoice with its PDF (and XML, when available) attached.

    Drafts are rejected. On success the invoice is marked as sent and the
    recipient is remembered for the next send.
    """
    logger.info(f"Send request for invoice {invoice_id} by user {caller.user_id}")

    try:
        return await service.send_invoice(caller, invoice_id, request)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "send_invoice")


@router.patch("/{invoice_id}/status")
async def update_invoice_status(
    invoice_id: str,
    request: StatusUpdateRequest,
    caller: CallerContext = Depends(get_caller),
    service: InvoiceService = Depends(get_invoice_service)
):
    """Mark an invoice as sent, reminded, paid or cancelled."""
    try:
        new_status = await service.update_status(caller, invoice_id, request.status)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "update_invoice_status")

    return {"success": True, "status": new_status.value}


@router.get("/{invoice_id}/email-preview")
async def email_preview(
    invoice_id: str,
    caller: CallerContext = Depends(get_caller),
    service: InvoiceService = Depends(get_invoice_service)
):
    try:
        preview = await service.email_preview(caller, invoice_id)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "render_email_preview")

    return preview.to_dict()
