from .organization import (
    Address,
    Organization,
    OrganizationRegister,
    OrganizationUpdate,
    RegistrationResponse,
)
from .plan import PlanCreate, PlanResponse, PlanUpdate
from .subscription import (
    CancelResponse,
    Order,
    QuantityUpdateRequest,
    QuantityUpdateResponse,
    SetupIntentResponse,
    SubscribeRequest,
    SubscribeResponse,
)
from .token import Token, TokenData
from .user import User, UserActiveUpdate, UserCreate, UserLogin

__all__ = [
    "Address",
    "Organization",
    "OrganizationRegister",
    "OrganizationUpdate",
    "RegistrationResponse",
    "PlanCreate",
    "PlanResponse",
    "PlanUpdate",
    "CancelResponse",
    "Order",
    "QuantityUpdateRequest",
    "QuantityUpdateResponse",
    "SetupIntentResponse",
    "SubscribeRequest",
    "SubscribeResponse",
    "Token",
    "TokenData",
    "User",
    "UserActiveUpdate",
    "UserCreate",
    "UserLogin",
]
