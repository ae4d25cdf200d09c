"""
Invoicing Core - Database Models

Tables touched by the invoice lifecycle and outbound email subsystem:
- companies: Organizations, including their sender identity (email_settings)
- company_users: Organization membership and role
- invoices: Invoice status, document references and recipient
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Date, DateTime, ForeignKey, Index, Enum as SQLEnum, JSON, Numeric
)

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class InvoiceStatus(str, PyEnum):
    """Invoice lifecycle status"""
    DRAFT = "draft"
    CREATED = "created"
    SENT = "sent"
    REMINDED = "reminded"
    PAID = "paid"
    CANCELLED = "cancelled"


class CompanyRole(str, PyEnum):
    """Role of a user inside an organization"""
    OWNER = "owner"
    MEMBER = "member"


# ==================== DATABASE MODELS ====================

class CompanyDB(Base):
    """
    Organization owning customers and invoices.

    email_settings holds the serialized sender identity; NULL reads as
    the platform default sender.
    """
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    email_settings = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class CompanyUserDB(Base):
    """Membership of a user in an organization"""
    __tablename__ = "company_users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(SQLEnum(CompanyRole, values_callable=lambda e: [m.value for m in e]),
                  nullable=False, default=CompanyRole.MEMBER)

    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_company_users_company_user", "company_id", "user_id", unique=True),
    )


class InvoiceDB(Base):
    """
    Invoice row, reduced to what the lifecycle and dispatch code reads.

    pdf_reference / xml_reference are written by document finalization and
    are never modified here.
    """
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(SQLEnum(InvoiceStatus, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=InvoiceStatus.DRAFT, index=True)
    invoice_number = Column(String(64), nullable=True)
    invoice_date = Column(Date, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")
    customer_name = Column(String(255), nullable=True)

    pdf_reference = Column(String(1024), nullable=True)
    xml_reference = Column(String(1024), nullable=True)
    recipient_email = Column(String(320), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
