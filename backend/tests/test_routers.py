"""
API Tests for the domain and invoice routers

Exercise the HTTP surface with FastAPI's TestClient. Collaborators
(email provider, storage, stores) are replaced through dependency overrides.

Run with: pytest tests/test_routers.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from database import get_db
from database.invoice_models import CompanyRole, InvoiceStatus
from email_integration.email_client import DomainRegistration, EmailClient, EmailResult
from middleware.auth import get_caller
from routers.dependencies import (
    get_attachment_retriever,
    get_email_client,
    get_identity_store,
    get_invoice_repository,
)
from server import app
from services.auth import CallerContext, create_access_token
from services.errors import NotFoundError, PersistenceError, ProviderError
from services.invoices import InvoiceRepository
from services.sender_identity import PlatformDefaultIdentity
from storage.attachments import AttachmentRetriever

from conftest import make_invoice, make_records


async def fake_db():
    yield AsyncMock()


@pytest.fixture
def caller():
    return CallerContext(user_id="user-owner", email="owner@acme.test", company_id="company-1", role=CompanyRole.OWNER)


@pytest.fixture
def email_client():
    client = MagicMock(spec=EmailClient)
    client.default_from_address = "rechnungen@platform.test"
    client.register_domain.return_value = DomainRegistration(
        provider_domain_id="dom_new", domain="acme.test", dns_records=make_records()
    )
    client.send_email.return_value = EmailResult(message_id="internal-1", provider_message_id="msg_1")
    return client


@pytest.fixture
def invoice():
    return make_invoice(id="inv-1")


@pytest.fixture
def repository(invoice):
    repo = MagicMock(spec=InvoiceRepository)
    repo.get = AsyncMock(return_value=invoice)
    repo.update_status = AsyncMock()
    return repo


@pytest.fixture
def retriever():
    retriever = MagicMock(spec=AttachmentRetriever)
    retriever.fetch.return_value = b"%PDF-1.7"
    return retriever


@pytest.fixture
def store(identity_store):
    company = MagicMock(id="company-1", email_settings=None)
    company.name = "Acme"
    identity_store.get_company = AsyncMock(return_value=company)
    return identity_store


@pytest.fixture
def client(caller, email_client, repository, retriever, store):
    app.dependency_overrides[get_db] = fake_db
    app.dependency_overrides[get_caller] = lambda: caller
    app.dependency_overrides[get_email_client] = lambda: email_client
    app.dependency_overrides[get_attachment_retriever] = lambda: retriever
    app.dependency_overrides[get_identity_store] = lambda: store
    app.dependency_overrides[get_invoice_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuthentication:
    """Test bearer token handling."""

    def test_missing_token(self):
        app.dependency_overrides[get_db] = fake_db
        try:
            response = TestClient(app).post("/api/invoices/inv-1/send", json={})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401

    def test_invalid_token(self):
        app.dependency_overrides[get_db] = fake_db
        try:
            response = TestClient(app).get("/api/domains", headers={"Authorization": "Bearer not-a-jwt"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401

    def test_token_without_membership(self):
        result = MagicMock()
        result.scalars.return_value.first.return_value = None
        session = AsyncMock()
        session.execute = AsyncMock(return_value=result)

        async def db_with_no_membership():
            yield session

        app.dependency_overrides[get_db] = db_with_no_membership
        try:
            token = create_access_token("user-x", "x@example.com")
            response = TestClient(app).delete("/api/domains", headers={"Authorization": f"Bearer {token}"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 404
        assert response.json()["detail"] == "No company found"


class TestDomainRoutes:
    """Test /api/domains endpoints."""

    def test_register(self, client, email_client):
        response = client.post("/api/domains", json={"from_email": "billing@acme.test", "from_name": "Acme GmbH"})

        assert response.status_code == 200
        data = response.json()
        assert data["domain"] == "acme.test"
        assert {r["purpose"] for r in data["dns_records"]} == {"signing", "return_path"}
        email_client.register_domain.assert_called_once_with("acme.test")

    def test_register_bad_email(self, client):
        response = client.post("/api/domains", json={"from_email": "billing", "from_name": "Acme GmbH"})

        assert response.status_code == 400

    def test_register_as_member(self, client, caller):
        caller.role = CompanyRole.MEMBER

        response = client.post("/api/domains", json={"from_email": "billing@acme.test", "from_name": "Acme GmbH"})

        assert response.status_code == 403

    def test_register_provider_failure(self, client, email_client):
        email_client.register_domain.side_effect = ProviderError("Domain already exists", operation="register_domain")

        response = client.post("/api/domains", json={"from_email": "billing@acme.test", "from_name": "Acme GmbH"})

        assert response.status_code == 500
        assert response.json()["detail"] == "Domain already exists"

    def test_delete(self, client, store):
        client.post("/api/domains", json={"from_email": "billing@acme.test", "from_name": "Acme GmbH"})

        response = client.delete("/api/domains")

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert store.state["identity"] == PlatformDefaultIdentity()

    def test_verify_without_domain(self, client):
        response = client.post("/api/domains/verify")

        assert response.status_code == 400

    def test_patch_settings(self, client):
        response = client.patch("/api/domains/settings", json={"reply_to_email": "office@acme.test"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["settings"]["reply_to_email"] == "office@acme.test"
        assert body["settings"]["mode"] == "platform_default"

    def test_patch_unknown_mode(self, client):
        response = client.patch("/api/domains/settings", json={"mode": "default"})

        assert response.status_code == 422

    def test_get_settings(self, client):
        response = client.get("/api/domains")

        assert response.status_code == 200
        assert response.json()["settings"]["mode"] == "platform_default"

    def test_persistence_failure(self, client, store):
        store.get.side_effect = PersistenceError("Failed to load company", operation="get_company")

        response = client.get("/api/domains")

        assert response.status_code == 500

    def test_unexpected_error_is_generic(self, client, store):
        store.get.side_effect = RuntimeError("boom")

        response = client.get("/api/domains")

        assert response.status_code == 500
        assert "boom" not in response.json()["detail"]


class TestInvoiceRoutes:
    """Test /api/invoices endpoints."""

    def test_send(self, client, email_client, repository):
        response = client.post(
            "/api/invoices/inv-1/send",
            json={"recipient_email": "client@example.com", "subject": "Invoice 2024-001", "body": "Hallo"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert email_client.send_email.call_args[0][0].from_address == "Acme <rechnungen@platform.test>"
        repository.update_status.assert_awaited_once()

    def test_send_draft(self, client, invoice, email_client):
        invoice.status = InvoiceStatus.DRAFT

        response = client.post(
            "/api/invoices/inv-1/send",
            json={"recipient_email": "client@example.com", "subject": "Invoice"}
        )

        assert response.status_code == 400
        email_client.send_email.assert_not_called()

    def test_send_unknown_invoice(self, client, repository):
        repository.get.side_effect = NotFoundError("Invoice not found")

        response = client.post("/api/invoices/missing/send", json={})

        assert response.status_code == 404

    def test_send_other_company(self, client, invoice):
        invoice.company_id = "company-2"

        response = client.post(
            "/api/invoices/inv-1/send",
            json={"recipient_email": "client@example.com", "subject": "Invoice"}
        )

        assert response.status_code == 403

    def test_update_status(self, client):
        response = client.patch("/api/invoices/inv-1/status", json={"status": "paid"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "status": "paid"}

    def test_update_status_invalid_transition(self, client, invoice, repository):
        invoice.status = InvoiceStatus.CANCELLED

        response = client.patch("/api/invoices/inv-1/status", json={"status": "sent"})

        assert response.status_code == 409
        repository.update_status.assert_not_awaited()

    def test_update_status_unknown_value(self, client):
        response = client.patch("/api/invoices/inv-1/status", json={"status": "archived"})

        assert response.status_code == 422

    def test_email_preview(self, client):
        response = client.get("/api/invoices/inv-1/email-preview")

        assert response.status_code == 200
        assert response.json()["subject"] == "Rechnung 2024-001"


class TestHealth:

    def test_liveness(self):
        response = TestClient(app).get("/api/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"
        assert "X-Request-ID" in response.headers
