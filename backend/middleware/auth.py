"""
Authentication dependency.

get_caller resolves the bearer token to a CallerContext carrying the
caller's organization membership and role.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.invoice_models import CompanyRole, CompanyUserDB
from logging_config import set_request_context
from sentry_integration import set_user
from services.auth import CallerContext, decode_token

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_caller(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> CallerContext:
    if credentials is None:
        raise _unauthorized("Unauthorized")

    token = decode_token(credentials.credentials)
    if token is None:
        raise _unauthorized("Invalid or expired token")
    if token.token_type != "access":
        raise _unauthorized("Invalid token type")

    set_request_context(user_id=token.user_id)

    membership = (
        await db.execute(select(CompanyUserDB).where(CompanyUserDB.user_id == token.user_id))
    ).scalars().first()

    if membership is None:
        set_user(token.user_id)
        return CallerContext(user_id=token.user_id, email=token.email)

    role = CompanyRole(membership.role)
    set_user(token.user_id, company_id=membership.company_id, role=role.value)
    return CallerContext(
        user_id=token.user_id,
        email=token.email,
        company_id=membership.company_id,
        role=role,
    )
