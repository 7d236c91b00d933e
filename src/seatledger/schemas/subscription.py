from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SubscribeRequest(BaseModel):
    plan_id: int
    seat_quantity: int = Field(..., alias="quantity")

    class Config:
        populate_by_name = True
        json_schema_extra = {"example": {"plan_id": 2, "quantity": 3}}


class SubscribeResponse(BaseModel):
    client_secret: Optional[str] = None
    subscription_id: str
    order_id: int
    status: str


class QuantityUpdateRequest(BaseModel):
    quantity: int


class QuantityUpdateResponse(BaseModel):
    subscription_id: str
    status: str
    quantity: Optional[int] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class SetupIntentResponse(BaseModel):
    client_secret: str


class CancelResponse(BaseModel):
    message: str
    subscription_status: str


class Order(BaseModel):
    id: int
    organization_id: int
    plan_id: int
    plan_name: str
    unit_price: int
    seat_quantity: int
    amount: int
    currency: str
    status: str
    stripe_payment_intent_id: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
