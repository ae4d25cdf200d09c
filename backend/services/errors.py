"""
Error taxonomy for the invoice lifecycle and outbound email subsystem.

Each exception carries the HTTP status the routers translate it to.
Compensation failures and partial-success writes are never raised; they
are logged where they happen.
"""

from typing import Optional


class InvoicingError(Exception):
    """Base class for all errors surfaced to callers"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ==================== AUTHORIZATION ====================

class NotAuthenticatedError(InvoicingError):
    """No authenticated caller"""
    status_code = 401


class AuthorizationError(InvoicingError):
    """Caller is not a member of the organization or lacks the required role"""
    status_code = 403


# ==================== VALIDATION ====================

class ValidationError(InvoicingError):
    """Malformed or missing input; the caller must correct it"""
    status_code = 400


class DraftInvoiceError(ValidationError):
    """Drafts cannot be sent before they are finalized"""


class NoAttachmentsError(ValidationError):
    """No document could be attached to the outgoing email"""


class ConfigurationError(ValidationError):
    """The organization has no custom domain configured"""


class InvalidTransitionError(ValidationError):
    """Requested invoice status change is not allowed from the current status"""
    status_code = 409

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        super().__init__(message or f"Cannot change invoice status from '{current}' to '{target}'")
        self.current = current
        self.target = target


# ==================== NOT FOUND ====================

class NotFoundError(InvoicingError):
    """Invoice, organization or configuration is absent"""
    status_code = 404


# ==================== EXTERNAL DEPENDENCIES ====================

class ExternalServiceError(InvoicingError):
    """
    A call to the email provider, object storage or datastore failed.

    operation and identifier describe the failing call for operators.
    """
    status_code = 500

    def __init__(self, message: str, operation: Optional[str] = None, identifier: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.identifier = identifier


class ProviderError(ExternalServiceError):
    """The transactional email provider rejected or failed a request"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        identifier: Optional[str] = None,
        not_found: bool = False
    ):
        super().__init__(message, operation=operation, identifier=identifier)
        self.not_found = not_found


class StorageError(ExternalServiceError):
    """Object storage request failed"""


class AttachmentNotFoundError(StorageError):
    """The stored document does not exist"""


class PersistenceError(ExternalServiceError):
    """Reading or writing a datastore record failed"""
