"""
Authentication dependencies
Current user resolution and role checks for route protection
"""
import logging
import secrets
from typing import List, Optional, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_async_session
from app.core.security import create_access_token, verify_token
from app.models import User, UserRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

__all__ = [
    "UserRole",
    "create_access_token",
    "get_current_user",
    "get_current_clinic_id",
    "RoleChecker",
    "require_tiss_admin",
    "require_tiss_staff",
    "verify_cron_secret",
]


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_async_session),
) -> User:
    """Resolve the authenticated user from the bearer token"""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Não autenticado",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(credentials.credentials)
    email = payload.get("sub")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Não autenticado",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Não autenticado",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


class RoleChecker:
    """
    Dependency class to check if user has one of the required roles
    """

    def __init__(self, roles: Union[UserRole, List[UserRole]], message: str = "Sem permissão"):
        if isinstance(roles, UserRole):
            roles = [roles]
        self.roles = [role.value for role in roles]
        self.message = message

    async def __call__(self, current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in self.roles:
            logger.info(f"User {current_user.id} with role {current_user.role} denied; required {self.roles}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=self.message)
        return current_user


require_tiss_admin = RoleChecker(
    [UserRole.CLINIC_ADMIN, UserRole.SUPER_ADMIN],
    message="Sem permissão para operações de faturamento TISS",
)
require_tiss_staff = RoleChecker(
    [UserRole.CLINIC_ADMIN, UserRole.SUPER_ADMIN, UserRole.DOCTOR, UserRole.SECRETARY],
    message="Sem permissão para acessar guias TISS",
)


def get_current_clinic_id(user: User) -> int:
    """Clinic scope of the caller; users without a clinic cannot bill"""
    if not user.clinic_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Clínica não encontrada")
    return user.clinic_id


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    """Scheduled jobs authenticate with the shared cron secret"""
    expected = settings.CRON_SECRET_KEY
    provided = credentials.credentials if credentials else None
    if not expected or not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Não autorizado")
