"""
Email Template Engine - Invoice Email Rendering

This module provides:
- Placeholder replacement for invoice emails ({invoice_number}, {customer_name},
  {total_amount}, {invoice_date})
- Built-in default subject/body used when an organization has no overrides
- Plain text to minimal HTML conversion for the HTML part of a message
"""

import re
import html
import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional, List
from dataclasses import dataclass

logger = logging.getLogger(__name__)


DEFAULT_INVOICE_EMAIL_SUBJECT = "Rechnung {invoice_number}"

DEFAULT_INVOICE_EMAIL_BODY = """Sehr geehrte Damen und Herren,

anbei erhalten Sie Rechnung {invoice_number} über {total_amount}.

Bei Fragen stehen wir Ihnen gerne zur Verfügung.

Mit freundlichen Grüßen"""

TEMPLATE_VARIABLES = {
    "invoice_number": "Invoice number",
    "customer_name": "Customer name",
    "total_amount": "Total amount incl. currency",
    "invoice_date": "Invoice date (DD.MM.YYYY)",
}

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£", "CHF": "CHF"}


@dataclass
class RenderResult:
    """Rendered subject and body of an invoice email"""
    subject: str
    body: str

    def to_dict(self) -> Dict[str, Any]:
        return {"subject": self.subject, "body": self.body}


def format_currency(amount, currency: str = "EUR") -> str:
    """Format an amount German-style, e.g. 1.234,56 €"""
    value = Decimal(str(amount or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    formatted = f"{value:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    symbol = CURRENCY_SYMBOLS.get((currency or "EUR").upper(), (currency or "").upper())
    return f"{formatted} {symbol}".strip()


def format_date(value) -> str:
    """Format a date as DD.MM.YYYY; empty for missing dates."""
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%d.%m.%Y")


class TemplateEngine:
    """
    Invoice email rendering.

    Only the known single-brace placeholders are replaced; any other
    brace expression is left untouched.
    """

    PLACEHOLDER_PATTERN = re.compile(r'\{(' + '|'.join(TEMPLATE_VARIABLES) + r')\}')

    def build_variables(self, invoice) -> Dict[str, str]:
        """Placeholder values for an invoice row."""
        return {
            "invoice_number": invoice.invoice_number or "",
            "customer_name": invoice.customer_name or "",
            "total_amount": format_currency(invoice.total_amount, getattr(invoice, "currency", "EUR")),
            "invoice_date": format_date(invoice.invoice_date),
        }

    def replace_placeholders(self, template: str, variables: Dict[str, str]) -> str:
        def replace_match(match):
            return str(variables.get(match.group(1), match.group(0)))

        return self.PLACEHOLDER_PATTERN.sub(replace_match, template or "")

    def extract_placeholders(self, template: str) -> List[str]:
        return self.PLACEHOLDER_PATTERN.findall(template or "")

    def render_invoice_email(
        self,
        invoice,
        subject_template: Optional[str] = None,
        body_template: Optional[str] = None
    ) -> RenderResult:
        """Render subject and body, falling back to the built-in defaults."""
        variables = self.build_variables(invoice)
        return RenderResult(
            subject=self.replace_placeholders(subject_template or DEFAULT_INVOICE_EMAIL_SUBJECT, variables),
            body=self.replace_placeholders(body_template or DEFAULT_INVOICE_EMAIL_BODY, variables),
        )


def text_to_html(text: Optional[str]) -> str:
    """
    Convert plain text to simple HTML for email.

    One escaped paragraph per non-blank line, a line break per blank line.
    """
    if not text:
        return ""
    return "\n".join(
        "<br>" if line.strip() == "" else f"<p>{html.escape(line)}</p>"
        for line in text.split("\n")
    )


# Global engine instance
_template_engine: Optional[TemplateEngine] = None


def get_template_engine() -> TemplateEngine:
    """Get or create the template engine singleton."""
    global _template_engine
    if _template_engine is None:
        _template_engine = TemplateEngine()
    return _template_engine
