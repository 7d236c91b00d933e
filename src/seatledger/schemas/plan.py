from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

PlanName = Literal["Basic", "Standard", "Plus"]


class PlanBase(BaseModel):
    name: PlanName
    description: Optional[str] = None
    price: int = Field(..., ge=0)  # Per seat, per year, minor units
    currency: str = "INR"
    features: List[str] = []
    min_users: int = Field(..., ge=1)
    max_users: int = Field(..., ge=1)
    trial_days: int = Field(0, ge=0)
    stripe_product_id: str = Field(..., min_length=1)
    stripe_price_id: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_seat_bounds(self):
        if self.min_users > self.max_users:
            raise ValueError("min_users cannot be greater than max_users")
        return self


class PlanCreate(PlanBase):
    pass


class PlanUpdate(BaseModel):
    """Partial update; only the supplied fields are changed."""

    name: Optional[PlanName] = None
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    currency: Optional[str] = None
    features: Optional[List[str]] = None
    min_users: Optional[int] = Field(None, ge=1)
    max_users: Optional[int] = Field(None, ge=1)
    trial_days: Optional[int] = Field(None, ge=0)
    stripe_product_id: Optional[str] = Field(None, min_length=1)
    stripe_price_id: Optional[str] = Field(None, min_length=1)


class PlanResponse(PlanBase):
    id: int
    billing_cycle: str = "yearly"
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
