"""
Invoice Service Layer

Business logic for:
- Email dispatch of finalized invoices (sender resolution, attachments, send)
- Manual status changes through the state machine
- Prefilled email previews from the organization's templates
"""

from dataclasses import dataclass
from email.utils import formataddr
from typing import List, Optional, Tuple
import logging

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.invoice_models import InvoiceDB, InvoiceStatus
from email_integration.email_client import EmailAttachment, EmailClient, EmailMessage
from email_integration.template_engine import get_template_engine, text_to_html
from services.auth import CallerContext
from services.errors import (
    AuthorizationError,
    DraftInvoiceError,
    ExternalServiceError,
    NoAttachmentsError,
    NotFoundError,
    PersistenceError,
    StorageError,
    ValidationError,
)
from services.invoice_status import (
    TransitionTrigger,
    assert_transition,
    can_transition,
    log_status_change,
)
from services.sender_identity import (
    CustomDomainIdentity,
    SenderIdentityStore,
    is_valid_email,
    parse_identity,
)
from storage.attachments import AttachmentRetriever

logger = logging.getLogger(__name__)


# ==================== PYDANTIC MODELS ====================

class SendInvoiceRequest(BaseModel):
    """Request to email an invoice"""
    recipient_email: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    """Request for a manual status change"""
    status: InvoiceStatus


@dataclass
class EmailPreview:
    recipient_email: Optional[str]
    subject: str
    body: str

    def to_dict(self):
        return {"recipient_email": self.recipient_email, "subject": self.subject, "body": self.body}


def format_address(email: str, name: Optional[str] = None) -> str:
    """Render an address header value, e.g. `Acme GmbH <billing@acme.test>`; quotes names when needed."""
    return formataddr((name, email))


def resolve_sender(identity, company_name: Optional[str], default_from_address: str) -> str:
    """
    From header for an outgoing message.

    The custom address is used only once its domain is verified.
    """
    if (
        isinstance(identity, CustomDomainIdentity)
        and identity.custom.domain_verified
        and identity.custom.from_email
    ):
        return format_address(identity.custom.from_email, identity.custom.from_name)

    if not default_from_address:
        raise ExternalServiceError("Default sender address is not configured", operation="resolve_sender")
    return format_address(default_from_address, company_name)


def resolve_reply_to(identity) -> Optional[str]:
    if not identity.reply_to_email:
        return None
    return format_address(identity.reply_to_email, identity.reply_to_name)


def ensure_member(caller: CallerContext, invoice: InvoiceDB) -> None:
    if not caller.is_member_of(invoice.company_id):
        raise AuthorizationError("Forbidden")


# ==================== REPOSITORY ====================

class InvoiceRepository:
    """Reads invoices and writes their status fields"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, invoice_id: str) -> InvoiceDB:
        try:
            result = await self.session.execute(
                select(InvoiceDB).where(InvoiceDB.id == invoice_id)
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load invoice {invoice_id}: {e}")
            raise PersistenceError("Failed to load invoice", operation="get_invoice", identifier=invoice_id) from e

        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    async def update_status(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        recipient_email: Optional[str] = None
    ) -> None:
        values = {"status": status}
        if recipient_email is not None:
            values["recipient_email"] = recipient_email

        try:
            await self.session.execute(
                update(InvoiceDB).where(InvoiceDB.id == invoice_id).values(**values)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to update invoice {invoice_id}: {e}")
            raise PersistenceError(
                "Failed to update invoice",
                operation="update_invoice_status",
                identifier=invoice_id
            ) from e


# ==================== SERVICE ====================

class InvoiceService:
    """
    Invoice operations for an authenticated caller.

    Every operation re-reads the invoice and the organization; nothing is
    cached between requests.
    """

    def __init__(
        self,
        repository: InvoiceRepository,
        identity_store: SenderIdentityStore,
        email_client: EmailClient,
        retriever: AttachmentRetriever,
        default_from_address: Optional[str] = None
    ):
        self.repository = repository
        self.identity_store = identity_store
        self.email_client = email_client
        self.retriever = retriever
        self.default_from_address = default_from_address or email_client.default_from_address

    def _collect_attachments(self, invoice: InvoiceDB) -> Tuple[List[EmailAttachment], List[str]]:
        """
        Fetch the invoice documents.

        A failing PDF fetch aborts the send. A failing XML fetch is logged
        and leaves the XML out.
        """
        basename = invoice.invoice_number or "invoice"
        attachments: List[EmailAttachment] = []
        errors: List[str] = []

        if invoice.pdf_reference:
            content = self.retriever.fetch(invoice.pdf_reference)
            attachments.append(EmailAttachment(
                filename=f"{basename}.pdf",
                content=content,
                content_type="application/pdf"
            ))
        else:
            logger.warning(f"Invoice {invoice.id} has no PDF reference")

        if invoice.xml_reference:
            try:
                content = self.retriever.fetch(invoice.xml_reference)
                attachments.append(EmailAttachment(
                    filename=f"{basename}.xml",
                    content=content,
                    content_type="application/xml"
                ))
            except StorageError as e:
                logger.warning(
                    f"Skipping XML attachment for invoice {invoice.id}: {e.message}",
                    extra={
                        "event": "invoice.attachment_skipped",
                        "invoice_id": invoice.id,
                        "reference": invoice.xml_reference,
                    }
                )
                errors.append(f"XML: {e.message}")

        return attachments, errors

    async def send_invoice(self, caller: CallerContext, invoice_id: str, request: SendInvoiceRequest) -> dict:
        """
        Email an invoice and mark it as sent.

        Once the provider accepted the message the call succeeds, even if
        the status update afterwards fails.
        """
        invoice = await self.repository.get(invoice_id)
        ensure_member(caller, invoice)

        if invoice.status == InvoiceStatus.DRAFT:
            raise DraftInvoiceError("Draft invoices cannot be sent. Please finalize the invoice first.")

        if not request.recipient_email:
            raise ValidationError("recipient_email is required")
        if not request.subject:
            raise ValidationError("subject is required")
        if not is_valid_email(request.recipient_email):
            raise ValidationError("Invalid recipient email format")

        company = await self.identity_store.get_company(invoice.company_id)
        identity = parse_identity(company.email_settings)

        from_address = resolve_sender(identity, company.name, self.default_from_address)
        reply_to = resolve_reply_to(identity)

        attachments, errors = self._collect_attachments(invoice)
        if not attachments:
            if errors:
                raise NoAttachmentsError(f"Failed to load documents: {', '.join(errors)}")
            raise NoAttachmentsError("No documents available to attach. Please make sure the invoice is finalized.")

        body = request.body or ""
        result = self.email_client.send_email(EmailMessage(
            to=request.recipient_email,
            subject=request.subject,
            html_body=text_to_html(body),
            text_body=body,
            from_address=from_address,
            reply_to=reply_to,
            attachments=attachments,
            metadata={"invoice_id": invoice.id, "company_id": invoice.company_id},
        ))

        logger.info(
            f"Invoice {invoice.id} emailed to {request.recipient_email}",
            extra={
                "event": "invoice.sent",
                "invoice_id": invoice.id,
                "company_id": invoice.company_id,
                "provider_message_id": result.provider_message_id,
                "attachments": len(attachments),
            }
        )

        previous = invoice.status
        new_status = InvoiceStatus.SENT if can_transition(previous, InvoiceStatus.SENT, TransitionTrigger.DISPATCH) else previous
        try:
            await self.repository.update_status(invoice.id, new_status, recipient_email=request.recipient_email)
        except PersistenceError as e:
            logger.error(
                f"Invoice {invoice.id} was sent but its status could not be updated: {e.message}",
                extra={"event": "invoice.status_update_failed", "invoice_id": invoice.id}
            )
            return {"success": True}

        if new_status != previous:
            log_status_change(invoice.id, previous, new_status, TransitionTrigger.DISPATCH, caller.user_id)

        return {"success": True}

    async def update_status(self, caller: CallerContext, invoice_id: str, target: InvoiceStatus) -> InvoiceStatus:
        """Manual status change by an organization member."""
        invoice = await self.repository.get(invoice_id)
        ensure_member(caller, invoice)

        previous = invoice.status
        new_status = assert_transition(previous, target, TransitionTrigger.MANUAL)

        await self.repository.update_status(invoice.id, new_status)
        log_status_change(invoice.id, previous, new_status, TransitionTrigger.MANUAL, caller.user_id)
        return new_status

    async def email_preview(self, caller: CallerContext, invoice_id: str) -> EmailPreview:
        """Subject and body for the send form, rendered from the organization's templates."""
        invoice = await self.repository.get(invoice_id)
        ensure_member(caller, invoice)

        identity = await self.identity_store.get(invoice.company_id)
        rendered = get_template_engine().render_invoice_email(
            invoice,
            subject_template=identity.email_subject_template,
            body_template=identity.email_body_template,
        )
        return EmailPreview(
            recipient_email=invoice.recipient_email,
            subject=rendered.subject,
            body=rendered.body,
        )
