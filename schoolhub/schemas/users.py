from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator
from enum import Enum

from schoolhub.schemas.common import reject_null


class RoleEnum(str, Enum):
    principal = "principal"
    admin = "admin"
    teacher = "teacher"
    staff = "staff"


# Auth schemas
class UserRegister(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1)
    npsn: str = Field(..., min_length=1, max_length=20)
    phone_number: Optional[str] = None


class LoginRequest(BaseModel):
    # Username or email
    username: str
    password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    profile_picture: Optional[str] = None

    @field_validator("full_name", "email")
    @classmethod
    def required_columns(cls, v):
        return reject_null(v)


class CurrentUser(BaseModel):
    """Identity resolved from a bearer token."""
    user_id: int
    username: str
    role: RoleEnum
    school_id: Optional[int] = None


class SchoolSummary(BaseModel):
    id: int
    npsn: str
    school_name: str
    full_address: Optional[str] = None
    accreditation: Optional[str] = None
    
    class Config:
        from_attributes = True


class UserProfile(BaseModel):
    id: int
    username: str
    email: str
    full_name: str
    role: RoleEnum
    phone_number: Optional[str] = None
    profile_picture: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    school: Optional[SchoolSummary] = None
    
    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserProfile
