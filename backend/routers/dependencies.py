"""
Shared router dependencies

Provides:
- Collaborator factories (email client, attachment retriever, stores)
  that tests replace through app.dependency_overrides
- to_http_exception: error taxonomy -> HTTPException
"""

import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_db
from email_integration.email_client import EmailClient
from services.errors import InvoicingError
from services.invoices import InvoiceRepository
from services.sender_identity import SenderIdentityStore
from storage.attachments import AttachmentRetriever

logger = logging.getLogger(__name__)


def get_email_client() -> EmailClient:
    return EmailClient.from_settings(get_settings())


@lru_cache
def get_attachment_retriever() -> AttachmentRetriever:
    return AttachmentRetriever.from_settings(get_settings())


def get_identity_store(db: AsyncSession = Depends(get_db)) -> SenderIdentityStore:
    return SenderIdentityStore(db)


def get_invoice_repository(db: AsyncSession = Depends(get_db)) -> InvoiceRepository:
    return InvoiceRepository(db)


def to_http_exception(error: Exception, operation: str) -> HTTPException:
    """
    Translate a service error into the HTTP response for it.

    Known errors keep their message; anything else is logged with its
    traceback and reported generically.
    """
    if isinstance(error, InvoicingError):
        if error.status_code >= 500:
            logger.error(
                f"{operation} failed: {error.message}",
                extra={
                    "operation": getattr(error, "operation", None) or operation,
                    "identifier": getattr(error, "identifier", None),
                }
            )
        return HTTPException(status_code=error.status_code, detail=error.message)

    logger.exception(f"Unexpected error in {operation}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {operation.replace('_', ' ')}"
    )
