"""
Session token handling and caller context.

Users sign in upstream; this service only verifies the bearer token it is
handed and describes the caller to the workflows:
- user id and email from the JWT
- the organization the user belongs to and their role in it
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from dataclasses import dataclass
import logging

from jose import JWTError, jwt
from pydantic import BaseModel

from config import get_settings
from database.invoice_models import CompanyRole
from services.errors import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60


class TokenData(BaseModel):
    """Data extracted from JWT token"""
    user_id: str
    email: str
    exp: Optional[datetime] = None
    token_type: str = "access"


@dataclass
class CallerContext:
    """
    Authenticated caller as seen by the workflows.

    company_id and role are None when the user belongs to no organization.
    """
    user_id: str
    email: str
    company_id: Optional[str] = None
    role: Optional[CompanyRole] = None

    def is_member_of(self, company_id: str) -> bool:
        return self.company_id is not None and self.company_id == company_id

    def is_owner(self) -> bool:
        return self.role == CompanyRole.OWNER

    def require_company(self) -> str:
        """Return the caller's organization or fail with 404."""
        if not self.company_id:
            raise NotFoundError("No company found")
        return self.company_id

    def require_owner(self) -> str:
        """Return the caller's organization if the caller owns it."""
        company_id = self.require_company()
        if not self.is_owner():
            raise AuthorizationError("Only owners can manage email settings")
        return company_id


def create_access_token(user_id: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue an access token. Used by tooling and tests; sign-in itself lives upstream."""
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "email": email,
        "type": "access",
        "iat": issued,
        "exp": issued + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[TokenData]:
    """Verified token claims, or None when the token is unusable."""
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        return None

    if not claims.get("sub") or not claims.get("email"):
        return None

    exp = claims.get("exp")
    return TokenData(
        user_id=claims["sub"],
        email=claims["email"],
        token_type=claims.get("type", "access"),
        exp=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )
