from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class UserBase(BaseModel):
    email: EmailStr


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserLogin(UserBase):
    password: str


class UserActiveUpdate(BaseModel):
    is_active: bool

    class Config:
        json_schema_extra = {"example": {"is_active": False}}


class User(UserBase):
    id: int
    organization_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool
    is_bootstrap_admin: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
