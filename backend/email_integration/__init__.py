"""
Email Integration Module

Outbound email for invoices using Resend as the email provider.

Features:
- Custom sending domain registration, verification and removal
- Email sending with attachments
- Invoice email templates with {placeholder} replacement
- Plain text to HTML conversion
"""

from .email_client import (
    EmailClient,
    EmailMessage,
    EmailAttachment,
    EmailResult,
    DomainRegistration,
    DomainVerification,
)
from .template_engine import (
    TemplateEngine,
    get_template_engine,
    text_to_html,
    RenderResult,
    TEMPLATE_VARIABLES,
)

__all__ = [
    # Client
    'EmailClient',
    'EmailMessage',
    'EmailAttachment',
    'EmailResult',
    'DomainRegistration',
    'DomainVerification',
    # Template Engine
    'TemplateEngine',
    'get_template_engine',
    'text_to_html',
    'RenderResult',
    'TEMPLATE_VARIABLES',
]
