"""
Email Client - Resend Provider Implementation

Domain identity and sending operations against the Resend API:
- register / verify / remove a custom sending domain (account credential)
- send one message with attachments (server credential)

Resend API Reference:
- Domains: POST /domains, POST /domains/{id}/verify, GET /domains/{id}, DELETE /domains/{id}
- Emails: POST /emails
- Auth: Bearer token in Authorization header

Provider DNS records are normalized into two proof purposes: DKIM records
prove message signing, the SPF records (MX + TXT) on the bounce subdomain
prove the return path.
"""

import logging
import uuid
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

import resend

from services.errors import ProviderError
from services.sender_identity import DnsRecord, ProofPurpose, purpose_verified

logger = logging.getLogger(__name__)

RECORD_PURPOSES = {
    "DKIM": ProofPurpose.SIGNING,
    "SPF": ProofPurpose.RETURN_PATH,
}


# ==================== RESULTS ====================

@dataclass
class DomainRegistration:
    """Result of registering a sending domain"""
    provider_domain_id: str
    domain: str
    dns_records: List[DnsRecord]


@dataclass
class DomainVerification:
    """Result of a provider-side verification check"""
    verified: bool
    signing_verified: bool
    return_path_verified: bool
    dns_records: List[DnsRecord]


@dataclass
class EmailAttachment:
    """Email attachment"""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class EmailMessage:
    """Represents an email message to send"""
    to: str
    subject: str
    html_body: str
    from_address: str
    text_body: Optional[str] = None
    reply_to: Optional[str] = None
    attachments: List[EmailAttachment] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class EmailResult:
    """Result of a successful send"""
    message_id: str
    provider_message_id: Optional[str] = None


def _is_not_found(error: Exception) -> bool:
    code = str(getattr(error, "code", "") or "")
    error_type = str(getattr(error, "error_type", "") or "")
    return code == "404" or error_type == "not_found"


def _error_message(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or "Email provider request failed"


def normalize_records(domain: str, records: List[Dict[str, Any]]) -> List[DnsRecord]:
    """
    Map provider records onto proof records.

    Records for other purposes (e.g. inbound MX) are ignored. Relative
    record names are qualified with the domain.
    """
    normalized = []
    for record in records or []:
        purpose = RECORD_PURPOSES.get(str(record.get("record", "")).upper())
        if purpose is None:
            continue

        name = record.get("name") or ""
        if name and not name.endswith(domain):
            host = f"{name}.{domain}"
        else:
            host = name or domain

        priority = record.get("priority")
        normalized.append(DnsRecord(
            purpose=purpose,
            record_type=record.get("type", ""),
            host=host,
            expected_value=record.get("value", ""),
            priority=int(priority) if priority not in (None, "") else None,
            verified=record.get("status") == "verified",
        ))
    return normalized


class EmailClient:
    """
    Email Client - Resend Provider Implementation.

    Usage:
        client = EmailClient(api_key=..., domains_api_key=...)
        registration = client.register_domain("acme.test")
        client.send_email(EmailMessage(...))

    Every failure raises ProviderError carrying the provider's message.
    No call is retried.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        domains_api_key: Optional[str] = None,
        default_from_address: Optional[str] = None
    ):
        """
        Args:
            api_key: Server credential used for sending
            domains_api_key: Account credential used for domain management
            default_from_address: Platform sender address
        """
        self.api_key = api_key or ""
        self.domains_api_key = domains_api_key or self.api_key
        self.default_from_address = default_from_address or ""

        if not self.api_key:
            logger.warning("Email client not configured - EMAIL_API_KEY not set")

    @classmethod
    def from_settings(cls, settings) -> "EmailClient":
        return cls(
            api_key=settings.EMAIL_API_KEY,
            domains_api_key=settings.domains_api_key,
            default_from_address=settings.EMAIL_FROM_ADDRESS,
        )

    def is_configured(self) -> bool:
        """Check if the client can send."""
        return bool(self.api_key and self.default_from_address)

    def _use_key(self, key: str, operation: str) -> None:
        if not key:
            raise ProviderError(
                "Email provider not configured. Check EMAIL_API_KEY and EMAIL_DOMAINS_API_KEY.",
                operation=operation
            )
        resend.api_key = key

    # ==================== DOMAINS ====================

    def register_domain(self, domain: str) -> DomainRegistration:
        """Create a sending domain and return the records to publish."""
        self._use_key(self.domains_api_key, "register_domain")
        try:
            logger.info(f"Registering sending domain {domain}")
            data = resend.Domains.create({"name": domain})
        except resend.exceptions.ResendError as e:
            logger.error(f"Resend domain registration failed for {domain}: {_error_message(e)}")
            raise ProviderError(_error_message(e), operation="register_domain", identifier=domain) from e

        provider_domain_id = str(data["id"])
        records = normalize_records(data.get("name", domain), data.get("records", []))
        logger.info(f"Sending domain {domain} registered as {provider_domain_id}")

        return DomainRegistration(
            provider_domain_id=provider_domain_id,
            domain=data.get("name", domain),
            dns_records=records
        )

    def verify_domain(self, provider_domain_id: str) -> DomainVerification:
        """Trigger a re-check of the proof records and return their state."""
        self._use_key(self.domains_api_key, "verify_domain")
        try:
            resend.Domains.verify(provider_domain_id)
            data = resend.Domains.get(provider_domain_id)
        except resend.exceptions.ResendError as e:
            logger.error(f"Resend domain verification failed for {provider_domain_id}: {_error_message(e)}")
            raise ProviderError(
                _error_message(e),
                operation="verify_domain",
                identifier=provider_domain_id,
                not_found=_is_not_found(e)
            ) from e

        records = normalize_records(data.get("name", ""), data.get("records", []))
        signing_verified = purpose_verified(records, ProofPurpose.SIGNING)
        return_path_verified = purpose_verified(records, ProofPurpose.RETURN_PATH)

        return DomainVerification(
            verified=signing_verified and return_path_verified,
            signing_verified=signing_verified,
            return_path_verified=return_path_verified,
            dns_records=records
        )

    def remove_domain(self, provider_domain_id: str) -> None:
        """Delete a domain registration; an already missing domain counts as removed."""
        self._use_key(self.domains_api_key, "remove_domain")
        try:
            resend.Domains.remove(provider_domain_id)
        except resend.exceptions.ResendError as e:
            if _is_not_found(e):
                logger.info(f"Sending domain {provider_domain_id} already removed")
                return
            logger.error(f"Resend domain removal failed for {provider_domain_id}: {_error_message(e)}")
            raise ProviderError(
                _error_message(e),
                operation="remove_domain",
                identifier=provider_domain_id
            ) from e
        logger.info(f"Sending domain {provider_domain_id} removed")

    # ==================== SENDING ====================

    def send_email(self, message: EmailMessage) -> EmailResult:
        """
        Send an email via Resend.

        Args:
            message: EmailMessage to send

        Returns:
            EmailResult with the provider message id
        """
        self._use_key(self.api_key, "send_email")

        internal_id = str(uuid.uuid4())

        params: Dict[str, Any] = {
            "from": message.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html_body,
        }

        if message.text_body is not None:
            params["text"] = message.text_body

        if message.reply_to:
            params["reply_to"] = message.reply_to

        if message.attachments:
            params["attachments"] = [
                {
                    "filename": att.filename,
                    "content": list(att.content),
                    "content_type": att.content_type
                }
                for att in message.attachments
            ]

        params["headers"] = {"X-Entity-Ref-ID": internal_id}

        if message.metadata:
            params["tags"] = [{"name": k, "value": str(v)} for k, v in message.metadata.items()]

        try:
            logger.info(f"Sending email {internal_id} with {len(message.attachments)} attachment(s) via Resend")
            response = resend.Emails.send(params)
        except resend.exceptions.ResendError as e:
            logger.error(f"Resend API error for email {internal_id}: {_error_message(e)}")
            raise ProviderError(_error_message(e), operation="send_email", identifier=internal_id) from e

        provider_msg_id = None
        if isinstance(response, dict):
            provider_msg_id = response.get("id")
        elif hasattr(response, "id"):
            provider_msg_id = response.id

        logger.info(f"Email sent successfully: {provider_msg_id}")

        return EmailResult(message_id=internal_id, provider_message_id=provider_msg_id)
