"""
Contract between the billing core and the external payment processor.

The core only depends on `PaymentProcessor`; `StripeProcessor` is the
production implementation and tests supply an in-memory fake.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    UNKNOWN = "unknown"


@dataclass
class ProcessorSubscription:
    subscription_ref: str
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    payment_confirmation_handle: Optional[str] = None
    payment_intent_ref: Optional[str] = None
    invoice_ref: Optional[str] = None
    quantity: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class ProcessorEvent:
    id: str
    type: EventType
    raw_type: str
    created: Optional[datetime] = None
    payment_intent_ref: Optional[str] = None
    invoice_ref: Optional[str] = None
    subscription_ref: Optional[str] = None
    amount: Optional[int] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class PaymentProcessor(ABC):
    """Operations the core requires from the processor.

    Every method raises a `ProcessorError` subclass on failure:
    `ProcessorDeclined`, `ProcessorNotFound` or `ProcessorTransient`.
    """

    @abstractmethod
    def create_customer(self, email: str, name: str) -> str:
        ...

    @abstractmethod
    def create_subscription(
        self, customer_ref: str, price_ref: str, quantity: int
    ) -> ProcessorSubscription:
        ...

    @abstractmethod
    def cancel_subscription(self, subscription_ref: str) -> None:
        ...

    @abstractmethod
    def update_subscription_quantity(
        self, subscription_ref: str, quantity: int
    ) -> ProcessorSubscription:
        ...

    @abstractmethod
    def create_setup_intent(self, customer_ref: str) -> str:
        ...

    @abstractmethod
    def parse_event(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        """Verify a webhook delivery and normalise it.

        Raises:
            WebhookSignatureError: if the payload or signature is invalid
        """
