"""
Sender Identity Store

The per-organization outbound email configuration, persisted as JSON in
companies.email_settings.

A SenderIdentity is one of two variants, selected by `mode`:
- PlatformDefaultIdentity: mails go out from the platform address. A custom
  domain switched off through the settings patch is kept in `retained_domain`
  so provider-side cleanup and re-verification remain possible.
- CustomDomainIdentity: mails go out from the organization's own domain once
  it is verified.

Both carry the reply-to and email template overrides.
"""

import re
import logging
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.invoice_models import CompanyDB
from services.errors import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def is_valid_email(email: Optional[str]) -> bool:
    """local-part @ domain-part, both non-empty, no whitespace."""
    return bool(email) and bool(EMAIL_PATTERN.match(email.strip()))


def email_domain(email: str) -> str:
    """Domain part of an address, lower-cased."""
    return email.strip().rsplit("@", 1)[1].lower()


# ==================== MODELS ====================

class ProofPurpose(str, Enum):
    """What a DNS proof record demonstrates"""
    SIGNING = "signing"
    RETURN_PATH = "return_path"


class DnsRecord(BaseModel):
    """A DNS record the domain owner must publish"""
    purpose: ProofPurpose
    record_type: str
    host: str
    expected_value: str
    priority: Optional[int] = None
    verified: bool = False


def purpose_verified(records: List[DnsRecord], purpose: ProofPurpose) -> bool:
    """True when the purpose has records and all of them verified."""
    matching = [r for r in records if r.purpose == purpose]
    return bool(matching) and all(r.verified for r in matching)


class CustomDomain(BaseModel):
    """A sending domain registered with the email provider"""
    custom_domain: str
    from_email: str
    from_name: str
    provider_domain_id: str
    domain_verified: bool = False
    domain_verified_at: Optional[datetime] = None
    dns_records: List[DnsRecord] = Field(default_factory=list)

    @field_validator("from_email")
    @classmethod
    def validate_from_email(cls, v):
        if not is_valid_email(v):
            raise ValueError("Invalid email format")
        return v.strip()

    @field_validator("from_name", "provider_domain_id", "custom_domain")
    @classmethod
    def validate_not_blank(cls, v):
        if not v or not str(v).strip():
            raise ValueError("must not be empty")
        return str(v).strip()

    @model_validator(mode="after")
    def check_verification(self):
        if self.domain_verified and not (
            purpose_verified(self.dns_records, ProofPurpose.SIGNING)
            and purpose_verified(self.dns_records, ProofPurpose.RETURN_PATH)
        ):
            raise ValueError("domain_verified requires verified signing and return-path records")
        return self

    @property
    def signing_verified(self) -> bool:
        return purpose_verified(self.dns_records, ProofPurpose.SIGNING)

    @property
    def return_path_verified(self) -> bool:
        return purpose_verified(self.dns_records, ProofPurpose.RETURN_PATH)


class _IdentityBase(BaseModel):
    reply_to_email: Optional[str] = None
    reply_to_name: Optional[str] = None
    email_subject_template: Optional[str] = None
    email_body_template: Optional[str] = None

    @field_validator("reply_to_email")
    @classmethod
    def validate_reply_to(cls, v):
        if v is None:
            return None
        if not is_valid_email(v):
            raise ValueError("Invalid reply-to email format")
        return v.strip()


class PlatformDefaultIdentity(_IdentityBase):
    mode: Literal["platform_default"] = "platform_default"
    retained_domain: Optional[CustomDomain] = None

    @property
    def domain(self) -> Optional[CustomDomain]:
        return self.retained_domain


class CustomDomainIdentity(_IdentityBase):
    mode: Literal["custom_domain"] = "custom_domain"
    custom: CustomDomain

    @property
    def domain(self) -> Optional[CustomDomain]:
        return self.custom


SenderIdentity = Annotated[
    Union[PlatformDefaultIdentity, CustomDomainIdentity],
    Field(discriminator="mode")
]

_identity_adapter = TypeAdapter(SenderIdentity)


def parse_identity(data: Optional[dict]) -> Union[PlatformDefaultIdentity, CustomDomainIdentity]:
    """Build a SenderIdentity from stored JSON; empty means platform default."""
    if not data:
        return PlatformDefaultIdentity()
    try:
        return _identity_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid email settings: {e.errors()[0].get('msg')}") from e


def provider_domain_id_of(identity) -> Optional[str]:
    """Provider id still owed cleanup, from either variant."""
    domain = identity.domain
    return domain.provider_domain_id if domain else None


def reset_to_platform_default(identity) -> PlatformDefaultIdentity:
    """Drop every custom-domain field, keep reply-to and templates."""
    return PlatformDefaultIdentity(
        reply_to_email=identity.reply_to_email,
        reply_to_name=identity.reply_to_name,
        email_subject_template=identity.email_subject_template,
        email_body_template=identity.email_body_template,
    )


# ==================== STORE ====================

class SenderIdentityStore:
    """Reads and writes the sender identity of an organization"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_company(self, company_id: str) -> CompanyDB:
        try:
            result = await self.session.execute(
                select(CompanyDB).where(CompanyDB.id == company_id)
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load company {company_id}: {e}")
            raise PersistenceError("Failed to load company", operation="get_company", identifier=company_id) from e

        company = result.scalar_one_or_none()
        if company is None:
            raise NotFoundError("Company not found")
        return company

    async def get(self, company_id: str):
        company = await self.get_company(company_id)
        return parse_identity(company.email_settings)

    async def save(self, company_id: str, identity) -> None:
        payload = identity.model_dump(mode="json", exclude_none=True)
        try:
            await self.session.execute(
                update(CompanyDB)
                .where(CompanyDB.id == company_id)
                .values(email_settings=payload)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to save email settings for company {company_id}: {e}")
            raise PersistenceError(
                "Failed to save email settings",
                operation="save_email_settings",
                identifier=company_id
            ) from e
        logger.info(f"Email settings saved for company {company_id} (mode: {identity.mode})")
