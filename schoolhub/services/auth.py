from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple

from jose import jwt
from passlib.context import CryptContext
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from schoolhub.config import settings
from schoolhub.exceptions import BusinessRuleError, NotFoundError, AuthenticationError
from schoolhub.models.users import User
from schoolhub.models.schools import School
from schoolhub.schemas.users import UserRegister, ProfileUpdate, UserProfile, SchoolSummary

# Password hashing utilities
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def verify_password(plain_password, hashed_password):
    """Verify a password against a hash."""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    """Generate a password hash."""
    return pwd_context.hash(password)

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token with the given data and expiration.
    """
    to_encode = data.copy()
    
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    
    return encoded_jwt

def resolve_school(user: User) -> Optional[School]:
    """The school a user acts for: the one they lead, else the one they belong to."""
    return user.principal_of or user.school

def user_to_profile(user: User) -> UserProfile:
    school = resolve_school(user)
    return UserProfile(
        id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        phone_number=user.phone_number,
        profile_picture=user.profile_picture,
        is_active=user.is_active,
        last_login=user.last_login,
        school=SchoolSummary.model_validate(school) if school else None,
    )

def token_for_user(user: User) -> str:
    school = resolve_school(user)
    return create_access_token(
        data={
            "sub": str(user.id),
            "username": user.username,
            "role": user.role,
            "school_id": school.id if school else None,
        }
    )

async def get_user_with_school(user_id: int, db: AsyncSession) -> Optional[User]:
    result = await db.execute(
        select(User)
        .options(selectinload(User.principal_of), selectinload(User.school))
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()

async def authenticate_user(username: str, password: str, db: AsyncSession) -> Optional[User]:
    """
    Authenticate a user by username or email.
    Returns the user if authentication is successful, None otherwise.
    """
    result = await db.execute(
        select(User)
        .options(selectinload(User.principal_of), selectinload(User.school))
        .where(or_(User.username == username, User.email == username))
    )
    user = result.scalars().first()
    
    if not user or not user.is_active:
        return None
    
    if not verify_password(password, user.hashed_password):
        return None
    
    return user

async def register_principal(data: UserRegister, db: AsyncSession) -> Tuple[User, School]:
    """
    Create a principal account and attach it to the school identified by NPSN.
    
    Raises:
        BusinessRuleError: If username/email is taken or the school already has a principal
        NotFoundError: If no school has the given NPSN
    """
    result = await db.execute(
        select(User).where(or_(User.username == data.username, User.email == data.email))
    )
    if result.scalars().first():
        raise BusinessRuleError("Username atau email sudah digunakan")
    
    result = await db.execute(select(School).where(School.npsn == data.npsn))
    school = result.scalars().first()
    if not school:
        raise NotFoundError("Sekolah dengan NPSN tersebut tidak ditemukan")
    
    if school.principal_id is not None:
        raise BusinessRuleError("Sekolah ini sudah memiliki kepala sekolah")
    
    user = User(
        username=data.username,
        email=data.email,
        full_name=data.full_name,
        phone_number=data.phone_number,
        hashed_password=get_password_hash(data.password),
        role="principal",
    )
    
    # User creation and school assignment commit together
    try:
        db.add(user)
        await db.flush()
        school.principal_id = user.id
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    
    return await get_user_with_school(user.id, db), school

async def record_login(user: User, db: AsyncSession) -> None:
    user.last_login = datetime.utcnow()
    await db.commit()

async def update_profile(user_id: int, data: ProfileUpdate, db: AsyncSession) -> User:
    user = await get_user_with_school(user_id, db)
    if not user:
        raise NotFoundError("Pengguna tidak ditemukan")
    
    update_data = data.model_dump(exclude_unset=True)
    if "email" in update_data and update_data["email"] != user.email:
        result = await db.execute(select(User).where(User.email == update_data["email"]))
        if result.scalars().first():
            raise BusinessRuleError("Email sudah digunakan")
    
    for key, value in update_data.items():
        setattr(user, key, value)
    
    await db.commit()
    return await get_user_with_school(user_id, db)

async def change_password(user_id: int, current_password: str, new_password: str, db: AsyncSession) -> None:
    user = await get_user_with_school(user_id, db)
    if not user:
        raise NotFoundError("Pengguna tidak ditemukan")
    
    if not verify_password(current_password, user.hashed_password):
        raise AuthenticationError("Password saat ini salah", "INVALID_PASSWORD")
    
    user.hashed_password = get_password_hash(new_password)
    await db.commit()
