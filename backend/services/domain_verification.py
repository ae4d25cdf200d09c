"""
Domain Verification Workflow

Orchestrates the email provider against the stored sender identity:
- register: platform_default -> custom_domain (pending)
- verify: custom_domain (pending) -> custom_domain (verified)
- remove: custom_domain (*) -> platform_default
- update_settings: reply-to / template edits, switching back to platform_default

Fallible but non-fatal steps (removing a superseded provider domain,
compensating an orphaned registration) are logged and never surfaced.
No step is retried.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from email_integration.email_client import EmailClient
from services.auth import CallerContext
from services.errors import ConfigurationError, ProviderError, ValidationError
from services.sender_identity import (
    CustomDomain,
    CustomDomainIdentity,
    DnsRecord,
    PlatformDefaultIdentity,
    SenderIdentityStore,
    email_domain,
    is_valid_email,
    provider_domain_id_of,
    reset_to_platform_default,
)

logger = logging.getLogger(__name__)


# ==================== REQUEST/RESULT MODELS ====================

class RegisterDomainRequest(BaseModel):
    """Request to set up a custom sending domain"""
    from_email: Optional[str] = Field(None, description="Sender address on the custom domain")
    from_name: Optional[str] = Field(None, description="Sender display name")
    reply_to_email: Optional[str] = Field(None, description="Reply-to address (optional)")
    reply_to_name: Optional[str] = Field(None, description="Reply-to display name (optional)")


class EmailSettingsPatch(BaseModel):
    """
    Partial update of email settings.

    Omitted fields stay unchanged; empty strings clear a field.
    """
    reply_to_email: Optional[str] = None
    reply_to_name: Optional[str] = None
    email_subject_template: Optional[str] = None
    email_body_template: Optional[str] = None
    mode: Optional[Literal["platform_default", "custom_domain"]] = None


@dataclass
class RegisterDomainResult:
    domain: str
    dns_records: List[DnsRecord]

    def to_dict(self):
        return {
            "success": True,
            "domain": self.domain,
            "dns_records": [r.model_dump(mode="json") for r in self.dns_records],
        }


@dataclass
class VerifyDomainResult:
    verified: bool
    signing_verified: bool
    return_path_verified: bool
    dns_records: List[DnsRecord]

    def to_dict(self):
        return {
            "verified": self.verified,
            "signing_verified": self.signing_verified,
            "return_path_verified": self.return_path_verified,
            "dns_records": [r.model_dump(mode="json") for r in self.dns_records],
        }


PATCHABLE_FIELDS = ("reply_to_email", "reply_to_name", "email_subject_template", "email_body_template")


class DomainVerificationService:
    """Custom sending domain lifecycle for one organization at a time"""

    def __init__(self, store: SenderIdentityStore, email_client: EmailClient):
        self.store = store
        self.email_client = email_client

    def _remove_best_effort(self, provider_domain_id: str, company_id: str, reason: str) -> None:
        try:
            self.email_client.remove_domain(provider_domain_id)
        except ProviderError as e:
            logger.warning(
                f"Failed to remove provider domain {provider_domain_id} ({reason}): {e.message}",
                extra={
                    "event": "email_domain.cleanup_failed",
                    "company_id": company_id,
                    "provider_domain_id": provider_domain_id,
                    "reason": reason,
                }
            )

    async def get_settings(self, caller: CallerContext):
        company_id = caller.require_company()
        return await self.store.get(company_id)

    async def register(self, caller: CallerContext, request: RegisterDomainRequest) -> RegisterDomainResult:
        """
        Register the domain of from_email with the provider.

        A previously registered provider domain is removed first; if saving
        the new identity fails, the new registration is removed again.
        """
        company_id = caller.require_owner()

        from_name = (request.from_name or "").strip()
        if not request.from_email or not from_name:
            raise ValidationError("from_email and from_name are required")
        if not is_valid_email(request.from_email):
            raise ValidationError("Invalid email format")
        if request.reply_to_email and not is_valid_email(request.reply_to_email):
            raise ValidationError("Invalid reply-to email format")

        domain = email_domain(request.from_email)
        current = await self.store.get(company_id)

        previous_id = provider_domain_id_of(current)
        if previous_id:
            self._remove_best_effort(previous_id, company_id, "superseded")

        registration = self.email_client.register_domain(domain)

        try:
            identity = CustomDomainIdentity(
                reply_to_email=request.reply_to_email or current.reply_to_email,
                reply_to_name=request.reply_to_name or current.reply_to_name,
                email_subject_template=current.email_subject_template,
                email_body_template=current.email_body_template,
                custom=CustomDomain(
                    custom_domain=domain,
                    from_email=request.from_email,
                    from_name=from_name,
                    provider_domain_id=registration.provider_domain_id,
                    domain_verified=False,
                    dns_records=registration.dns_records,
                )
            )
            await self.store.save(company_id, identity)
        except Exception:
            logger.error(f"Saving custom domain {domain} failed for company {company_id}, removing registration")
            self._remove_best_effort(registration.provider_domain_id, company_id, "orphaned")
            raise

        logger.info(
            f"Custom domain {domain} registered for company {company_id}",
            extra={"event": "email_domain.registered", "company_id": company_id,
                   "provider_domain_id": registration.provider_domain_id}
        )
        return RegisterDomainResult(domain=domain, dns_records=registration.dns_records)

    async def verify(self, caller: CallerContext) -> VerifyDomainResult:
        """Re-check the DNS proof records and store the outcome."""
        company_id = caller.require_owner()
        current = await self.store.get(company_id)

        domain = current.domain
        if domain is None:
            raise ConfigurationError("No custom domain configured")

        result = self.email_client.verify_domain(domain.provider_domain_id)

        if result.verified:
            verified_at = domain.domain_verified_at if domain.domain_verified else datetime.now(timezone.utc)
        else:
            verified_at = None

        updated_domain = CustomDomain.model_validate({
            **domain.model_dump(),
            "domain_verified": result.verified,
            "domain_verified_at": verified_at,
            "dns_records": result.dns_records,
        })

        if isinstance(current, CustomDomainIdentity):
            identity = current.model_copy(update={"custom": updated_domain})
        else:
            identity = current.model_copy(update={"retained_domain": updated_domain})

        await self.store.save(company_id, identity)

        if result.verified and not domain.domain_verified:
            logger.info(
                f"Custom domain {domain.custom_domain} verified for company {company_id}",
                extra={"event": "email_domain.verified", "company_id": company_id}
            )

        return VerifyDomainResult(
            verified=result.verified,
            signing_verified=result.signing_verified,
            return_path_verified=result.return_path_verified,
            dns_records=result.dns_records,
        )

    async def remove(self, caller: CallerContext) -> PlatformDefaultIdentity:
        """Remove the custom domain and fall back to the platform sender."""
        company_id = caller.require_owner()
        current = await self.store.get(company_id)

        provider_domain_id = provider_domain_id_of(current)
        if provider_domain_id:
            self._remove_best_effort(provider_domain_id, company_id, "removed by owner")

        identity = reset_to_platform_default(current)
        await self.store.save(company_id, identity)

        logger.info(
            f"Custom domain removed for company {company_id}",
            extra={"event": "email_domain.removed", "company_id": company_id}
        )
        return identity

    async def update_settings(self, caller: CallerContext, patch: EmailSettingsPatch):
        """
        Update reply-to and template fields in place.

        Switching to platform_default keeps the custom domain so it is not
        lost; switching to custom_domain is only possible through register.
        """
        company_id = caller.require_company()
        current = await self.store.get(company_id)

        updates = {
            name: (getattr(patch, name) or None)
            for name in PATCHABLE_FIELDS
            if name in patch.model_fields_set
        }
        if updates.get("reply_to_email") and not is_valid_email(updates["reply_to_email"]):
            raise ValidationError("Invalid reply-to email format")

        target = current
        if "mode" in patch.model_fields_set and patch.mode and patch.mode != current.mode:
            if patch.mode == "custom_domain":
                raise ValidationError("A custom domain can only be set up by registering it")
            target = PlatformDefaultIdentity(
                reply_to_email=current.reply_to_email,
                reply_to_name=current.reply_to_name,
                email_subject_template=current.email_subject_template,
                email_body_template=current.email_body_template,
                retained_domain=current.domain,
            )

        identity = type(target).model_validate({**target.model_dump(), **updates})
        await self.store.save(company_id, identity)
        return identity
