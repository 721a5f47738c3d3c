import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolhub.api.deps import ok
from schoolhub.database import get_db
from schoolhub.exceptions import AuthenticationError, NotFoundError
from schoolhub.schemas.users import UserRegister, LoginRequest, PasswordChange, ProfileUpdate, CurrentUser, Token
from schoolhub.middleware.authentication import get_current_user
from schoolhub.services.auth import (
    authenticate_user, register_principal, record_login, update_profile, change_password,
    get_user_with_school, user_to_profile, token_for_user,
)

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
async def register(
    data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a principal account for an existing school.
    """
    user, school = await register_principal(data, db)
    logger.info(f"Principal {user.username} registered for school {school.npsn}")

    token = Token(access_token=token_for_user(user), user=user_to_profile(user))
    return ok("Registrasi berhasil", token)

@router.post("/auth/login")
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Authenticate with username or email and return an access token.
    """
    user = await authenticate_user(data.username, data.password, db)
    if not user:
        logger.info(f"Failed login attempt for {data.username}")
        raise AuthenticationError("Username atau password salah", "INVALID_CREDENTIALS")

    await record_login(user, db)
    user = await get_user_with_school(user.id, db)

    token = Token(access_token=token_for_user(user), user=user_to_profile(user))
    return ok("Login berhasil", token)

@router.get("/auth/profile")
async def get_profile(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await get_user_with_school(current_user.user_id, db)
    if not user:
        raise NotFoundError("Pengguna tidak ditemukan")
    return ok("Profil berhasil diambil", user_to_profile(user))

@router.put("/auth/profile")
async def put_profile(
    data: ProfileUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await update_profile(current_user.user_id, data, db)
    return ok("Profil berhasil diperbarui", user_to_profile(user))

@router.post("/auth/change-password")
async def post_change_password(
    data: PasswordChange,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await change_password(current_user.user_id, data.current_password, data.new_password, db)
    logger.info(f"Password changed for user {current_user.user_id}")
    return ok("Password berhasil diubah")

@router.post("/auth/logout")
async def logout(current_user: CurrentUser = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy
    return ok("Logout berhasil")
