"""
FastAPI Dependencies - Authentication, authorization and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import get_settings
from app.db.session import get_write_db
from app.exceptions import AuthenticationError
from app.models.api import UserRole
from app.services.payment_provider import PaymentProcessor
from app.services.provisioning_provider import ProvisioningProvider
from app.services.service_store import ServiceStore

logger = get_logger(__name__)

SESSION_COOKIE = "session_token"

# Bearer token scheme for session JWT auth
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller from a session token."""

    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def decode_session_token(token: str, secret: str) -> CallerIdentity:
    """
    Verify a session JWT (HS256) and extract the caller.

    Raises:
        AuthenticationError: If the token is expired, invalid or lacks claims
    """
    if not secret:
        raise AuthenticationError("session token secret is not configured")
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"invalid token: {exc}") from exc

    try:
        user_id = UUID(str(payload["sub"]))
        role = UserRole(payload.get("role", UserRole.USER.value))
    except (KeyError, ValueError) as exc:
        raise AuthenticationError("invalid token payload") from exc
    return CallerIdentity(user_id=user_id, role=role)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CallerIdentity:
    """
    Authenticate the caller.

    Checks the Authorization header first, then the session cookie.

    Raises:
        HTTPException(401): If no token is provided or the token is invalid
    """
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
    if not token:
        logger.warning("auth_no_token", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_session_token(token, get_settings().session_jwt_secret)
    except AuthenticationError as exc:
        logger.warning("auth_invalid_token", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def require_admin_role(
    caller: CallerIdentity = Depends(get_current_user),
) -> CallerIdentity:
    """
    Require the admin role.

    Raises:
        HTTPException(403): If the caller is not an admin
    """
    if not caller.is_admin:
        logger.warning(
            "auth_insufficient_role", user_id=str(caller.user_id), role=caller.role.value
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return caller


# ============================================================================
# Service wiring
# ============================================================================


def get_provisioning_provider(request: Request) -> ProvisioningProvider:
    """Provisioning provider built at startup."""
    provider: ProvisioningProvider = request.app.state.provisioning_provider
    return provider


def get_payment_processor(request: Request) -> PaymentProcessor:
    """Payment processor built at startup."""
    processor: PaymentProcessor = request.app.state.payment_processor
    return processor


def get_service_store(db: AsyncSession = Depends(get_write_db)) -> ServiceStore:
    """Store bound to this request's write session."""
    return ServiceStore(db)
