from typing import List, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.config import settings
from schoolhub.database import get_db
from schoolhub.exceptions import AuthenticationError, ForbiddenError, BusinessRuleError
from schoolhub.schemas.users import CurrentUser
from schoolhub.services.auth import get_user_with_school, resolve_school

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    """
    Get the current authenticated user from the provided JWT token.
    
    Args:
        token: The JWT token
        db: Database session
        
    Returns:
        The identity carried by the token, with the school resolved from the database
        
    Raises:
        AuthenticationError: If the token is missing, invalid, expired or the user is gone
    """
    if not token:
        raise AuthenticationError("Token akses diperlukan", "UNAUTHORIZED")
    
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError("Token sudah kedaluwarsa", "TOKEN_EXPIRED")
    except JWTError:
        raise AuthenticationError("Token tidak valid", "INVALID_TOKEN")
    
    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Token tidak valid", "INVALID_TOKEN")
    
    user = await get_user_with_school(int(user_id), db)
    if user is None or not user.is_active:
        raise AuthenticationError("Pengguna tidak ditemukan atau tidak aktif", "INVALID_TOKEN")
    
    school = resolve_school(user)
    return CurrentUser(
        user_id=user.id,
        username=user.username,
        role=user.role,
        school_id=school.id if school else None,
    )

class RoleChecker:
    """
    Dependency for checking if a user has the required role(s).
    """
    def __init__(self, allowed_roles: List[str]):
        self.allowed_roles = allowed_roles
    
    async def __call__(self, user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role.value not in self.allowed_roles:
            raise ForbiddenError("Akses ditolak. Anda tidak memiliki izin untuk melakukan aksi ini", "FORBIDDEN")
        return user

require_principal_or_admin = RoleChecker(["principal", "admin"])

async def get_school_id(user: CurrentUser = Depends(get_current_user)) -> int:
    """School scope of the caller; every school-scoped endpoint depends on it."""
    if user.school_id is None:
        raise BusinessRuleError("Informasi sekolah tidak ditemukan", "SCHOOL_INFO_MISSING")
    return user.school_id
