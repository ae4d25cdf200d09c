"""
Unit Tests for the Resend Email Client

Tests:
- DNS record normalization into signing / return-path proofs
- Domain register / verify / remove
- Sending with attachments and reply-to
- Credential selection per operation

Run with: pytest tests/test_email_client.py -v
"""

from unittest.mock import patch

import pytest
import resend

from email_integration.email_client import (
    EmailAttachment,
    EmailClient,
    EmailMessage,
    normalize_records,
)
from services.errors import ProviderError
from services.sender_identity import ProofPurpose


def resend_error(code="422", error_type="validation_error", message="Invalid request"):
    return resend.exceptions.ResendError(
        code=code,
        error_type=error_type,
        message=message,
        suggested_action="",
    )


PROVIDER_RECORDS = [
    {
        "record": "SPF", "name": "send", "type": "MX", "ttl": "Auto",
        "status": "verified", "value": "feedback-smtp.eu-west-1.amazonses.com", "priority": 10,
    },
    {
        "record": "SPF", "name": "send", "type": "TXT", "ttl": "Auto",
        "status": "verified", "value": "v=spf1 include:amazonses.com ~all",
    },
    {
        "record": "DKIM", "name": "resend._domainkey", "type": "TXT", "ttl": "Auto",
        "status": "pending", "value": "p=MIGfMA0GCSqGSIb3DQEBAQUAA4GNADCBiQKBgQ",
    },
    {
        "record": "Receiving", "name": "acme.test", "type": "MX", "ttl": "Auto",
        "status": "not_started", "value": "inbound-smtp.eu-west-1.amazonaws.com", "priority": 10,
    },
]


@pytest.fixture
def client():
    return EmailClient(
        api_key="re_send",
        domains_api_key="re_domains",
        default_from_address="rechnungen@platform.test"
    )


class TestNormalizeRecords:
    """Test provider record normalization."""

    def test_maps_purposes_and_drops_others(self):
        records = normalize_records("acme.test", PROVIDER_RECORDS)

        assert [r.purpose for r in records] == [
            ProofPurpose.RETURN_PATH, ProofPurpose.RETURN_PATH, ProofPurpose.SIGNING
        ]

    def test_qualifies_hosts(self):
        records = normalize_records("acme.test", PROVIDER_RECORDS)

        assert records[0].host == "send.acme.test"
        assert records[2].host == "resend._domainkey.acme.test"

    def test_priority_and_status(self):
        records = normalize_records("acme.test", PROVIDER_RECORDS)

        assert records[0].priority == 10
        assert records[1].priority is None
        assert records[0].verified is True
        assert records[2].verified is False


class TestDomains:
    """Test domain management calls."""

    def test_register_domain(self, client):
        created = {"id": "dom_123", "name": "acme.test", "status": "not_started", "records": PROVIDER_RECORDS}

        with patch("resend.Domains.create", return_value=created) as mock_create:
            registration = client.register_domain("acme.test")

        mock_create.assert_called_once_with({"name": "acme.test"})
        assert resend.api_key == "re_domains"
        assert registration.provider_domain_id == "dom_123"
        assert registration.domain == "acme.test"
        assert len(registration.dns_records) == 3

    def test_register_domain_provider_error(self, client):
        with patch("resend.Domains.create", side_effect=resend_error(message="Domain already exists")):
            with pytest.raises(ProviderError) as exc_info:
                client.register_domain("acme.test")

        assert exc_info.value.message == "Domain already exists"
        assert exc_info.value.operation == "register_domain"

    def test_verify_domain_partial(self, client):
        domain = {"id": "dom_123", "name": "acme.test", "records": PROVIDER_RECORDS}

        with patch("resend.Domains.verify") as mock_verify, \
                patch("resend.Domains.get", return_value=domain):
            result = client.verify_domain("dom_123")

        mock_verify.assert_called_once_with("dom_123")
        assert result.verified is False
        assert result.signing_verified is False
        assert result.return_path_verified is True

    def test_verify_domain_complete(self, client):
        records = [dict(r, status="verified") for r in PROVIDER_RECORDS]

        with patch("resend.Domains.verify"), \
                patch("resend.Domains.get", return_value={"id": "dom_123", "name": "acme.test", "records": records}):
            result = client.verify_domain("dom_123")

        assert result.verified is True

    def test_verify_unknown_domain(self, client):
        with patch("resend.Domains.verify", side_effect=resend_error("404", "not_found", "Domain not found")):
            with pytest.raises(ProviderError) as exc_info:
                client.verify_domain("dom_gone")

        assert exc_info.value.not_found is True

    def test_remove_domain(self, client):
        with patch("resend.Domains.remove") as mock_remove:
            client.remove_domain("dom_123")

        mock_remove.assert_called_once_with("dom_123")

    def test_remove_missing_domain_is_success(self, client):
        with patch("resend.Domains.remove", side_effect=resend_error("404", "not_found", "Domain not found")):
            client.remove_domain("17")

    def test_remove_domain_other_error(self, client):
        with patch("resend.Domains.remove", side_effect=resend_error("500", "application_error", "Internal error")):
            with pytest.raises(ProviderError):
                client.remove_domain("17")

    def test_missing_credential(self):
        client = EmailClient(api_key="", domains_api_key="")

        with patch("resend.Domains.create") as mock_create:
            with pytest.raises(ProviderError, match="not configured"):
                client.register_domain("acme.test")

        mock_create.assert_not_called()


class TestSendEmail:
    """Test message sending."""

    def test_send_payload(self, client):
        message = EmailMessage(
            to="client@example.com",
            subject="Invoice 2024-001",
            html_body="<p>Hallo</p>",
            text_body="Hallo",
            from_address="Acme GmbH <billing@acme.test>",
            reply_to="Office <office@acme.test>",
            attachments=[EmailAttachment("2024-001.pdf", b"%PDF-1.7", "application/pdf")],
        )

        with patch("resend.Emails.send", return_value={"id": "msg_1"}) as mock_send:
            result = client.send_email(message)

        params = mock_send.call_args[0][0]
        assert resend.api_key == "re_send"
        assert params["from"] == "Acme GmbH <billing@acme.test>"
        assert params["to"] == ["client@example.com"]
        assert params["reply_to"] == "Office <office@acme.test>"
        assert params["text"] == "Hallo"
        assert params["attachments"][0]["filename"] == "2024-001.pdf"
        assert params["attachments"][0]["content"] == list(b"%PDF-1.7")
        assert result.provider_message_id == "msg_1"
        assert params["headers"]["X-Entity-Ref-ID"] == result.message_id

    def test_send_without_reply_to(self, client):
        message = EmailMessage(
            to="client@example.com",
            subject="Invoice",
            html_body="",
            from_address="rechnungen@platform.test",
        )

        with patch("resend.Emails.send", return_value={"id": "msg_2"}) as mock_send:
            client.send_email(message)

        params = mock_send.call_args[0][0]
        assert "reply_to" not in params
        assert "attachments" not in params
        assert "tags" not in params

    def test_send_provider_error(self, client):
        message = EmailMessage(to="client@example.com", subject="x", html_body="", from_address="a@b.test")

        with patch("resend.Emails.send", side_effect=resend_error(message="Domain is not verified")):
            with pytest.raises(ProviderError, match="Domain is not verified"):
                client.send_email(message)

    def test_is_configured(self, client):
        assert client.is_configured() is True
        assert EmailClient().is_configured() is False

    def test_send_metadata_as_tags(self, client):
        message = EmailMessage(
            to="client@example.com",
            subject="Invoice",
            html_body="<p>Hallo</p>",
            from_address="rechnungen@platform.test",
            metadata={"invoice_id": "inv-1", "company_id": "company-1"},
        )

        with patch("resend.Emails.send", return_value={"id": "msg_3"}) as mock_send:
            client.send_email(message)

        assert mock_send.call_args[0][0]["tags"] == [
            {"name": "invoice_id", "value": "inv-1"},
            {"name": "company_id", "value": "company-1"},
        ]
