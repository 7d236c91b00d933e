from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from src.seatledger.schemas.user import User


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None


class OrganizationRegister(BaseModel):
    """Sign-up payload: the organization plus its first admin."""

    name: str = Field(..., min_length=1)
    billing_email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Acme Pvt Ltd",
                "billing_email": "owner@acme.example",
                "password": "correct-horse",
                "first_name": "Asha",
                "last_name": "Rao",
            }
        }


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    billing_email: Optional[EmailStr] = None
    address: Optional[Address] = None


class Organization(BaseModel):
    id: int
    name: str
    plan_id: int
    stripe_customer_id: str
    stripe_subscription_id: Optional[str] = None
    active_seat_count: int
    trial_ends_at: Optional[datetime] = None
    subscription_status: str
    billing_email: str
    address: Address
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RegistrationResponse(BaseModel):
    organization: Organization
    admin: User
    access_token: str
    token_type: str = "bearer"
