from src.seatledger.core.database import Base
from src.seatledger.models.billing import (
    PLAN_TIERS,
    Order,
    OrderStatus,
    Organization,
    Plan,
    SubscriptionStatus,
    User,
    WebhookEvent,
)
