"""
Stripe implementation of the payment processor contract.

Built once at application start-up (see ``src.seatledger.main``) and passed
to the services that need it; nothing here touches the module-level
``stripe.api_key``.
"""

import logging
import os
from typing import Any, Mapping, Optional

import stripe
from dotenv import load_dotenv

from src.seatledger.core.errors import (
    ProcessorDeclined,
    ProcessorError,
    ProcessorNotFound,
    ProcessorTransient,
    WebhookSignatureError,
)
from src.seatledger.services.processor import (
    EventType,
    PaymentProcessor,
    ProcessorEvent,
    ProcessorSubscription,
)
from src.seatledger.utils.timeutils import from_timestamp

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_TIMEOUT_SECONDS = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "20"))
STRIPE_MAX_RETRIES = int(os.getenv("STRIPE_MAX_RETRIES", "2"))
# Invoices on this API version still carry `payment_intent`
STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION", "2024-06-20")

EVENT_TYPES = {
    "invoice.paid": EventType.PAYMENT_SUCCEEDED,
    "invoice.payment_succeeded": EventType.PAYMENT_SUCCEEDED,
    "invoice.payment_failed": EventType.PAYMENT_FAILED,
    "charge.refunded": EventType.PAYMENT_REFUNDED,
    "customer.subscription.deleted": EventType.SUBSCRIPTION_DELETED,
}


def _ref(value: Any) -> Optional[str]:
    """Return the id of an expandable field (either an id string or an object)."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def _first_item(obj: Mapping) -> Mapping:
    # `items`/`lines` must be read with [] because StripeObject is a dict
    container = obj.get("items") or obj.get("lines") or {}
    data = container.get("data") if isinstance(container, Mapping) else None
    return (data or [{}])[0] or {}


def _invoice_subscription_ref(invoice: Mapping) -> Optional[str]:
    """Find the subscription id on an invoice (top-level, parent or line items)."""
    ref = _ref(invoice.get("subscription"))
    if ref:
        return ref

    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    ref = _ref(details.get("subscription"))
    if ref:
        return ref

    lines = (invoice.get("lines") or {}).get("data") or []
    for line in lines:
        if not line:
            continue
        # Some payloads attach the subscription to the line item
        if line.get("subscription"):
            return _ref(line.get("subscription"))
    return None


def subscription_from_stripe(subscription: Mapping) -> ProcessorSubscription:
    """Normalise a Stripe subscription object."""
    item = _first_item(subscription)
    period_start = subscription.get("current_period_start") or item.get(
        "current_period_start"
    )
    period_end = subscription.get("current_period_end") or item.get(
        "current_period_end"
    )

    client_secret = None
    payment_intent_ref = None
    invoice = subscription.get("latest_invoice")
    invoice_ref = _ref(invoice)
    if invoice is not None and not isinstance(invoice, str):
        payment_intent = invoice.get("payment_intent")
        payment_intent_ref = _ref(payment_intent)
        if payment_intent is not None and not isinstance(payment_intent, str):
            client_secret = payment_intent.get("client_secret")
        if client_secret is None:
            # Newer API versions expose the secret on the invoice itself
            confirmation = invoice.get("confirmation_secret") or {}
            client_secret = confirmation.get("client_secret")

    return ProcessorSubscription(
        subscription_ref=subscription["id"],
        status=subscription.get("status"),
        current_period_start=from_timestamp(period_start),
        current_period_end=from_timestamp(period_end),
        payment_confirmation_handle=client_secret,
        payment_intent_ref=payment_intent_ref,
        invoice_ref=invoice_ref,
        quantity=item.get("quantity") or subscription.get("quantity"),
        created_at=from_timestamp(subscription.get("created")),
    )


def event_from_stripe(event: Mapping) -> ProcessorEvent:
    """Normalise a verified Stripe event into a ProcessorEvent."""
    raw_type = event.get("type") or ""
    event_type = EVENT_TYPES.get(raw_type, EventType.UNKNOWN)
    obj = (event.get("data") or {}).get("object") or {}

    processor_event = ProcessorEvent(
        id=event["id"],
        type=event_type,
        raw_type=raw_type,
        created=from_timestamp(event.get("created")),
    )

    if event_type in (EventType.PAYMENT_SUCCEEDED, EventType.PAYMENT_FAILED):
        line = _first_item(obj)
        period = line.get("period") or {}
        processor_event.invoice_ref = obj.get("id")
        processor_event.payment_intent_ref = _ref(obj.get("payment_intent"))
        processor_event.subscription_ref = _invoice_subscription_ref(obj)
        processor_event.amount = (
            obj.get("amount_paid")
            if event_type == EventType.PAYMENT_SUCCEEDED
            else obj.get("amount_due")
        )
        processor_event.period_start = from_timestamp(period.get("start"))
        processor_event.period_end = from_timestamp(period.get("end"))
    elif event_type == EventType.PAYMENT_REFUNDED:
        processor_event.payment_intent_ref = _ref(obj.get("payment_intent"))
        processor_event.invoice_ref = _ref(obj.get("invoice"))
        processor_event.amount = obj.get("amount_refunded")
    elif event_type == EventType.SUBSCRIPTION_DELETED:
        processor_event.subscription_ref = obj.get("id")

    return processor_event


def translate_stripe_error(error: Exception, action: str) -> ProcessorError:
    """Map a Stripe exception onto the processor error taxonomy."""
    message = f"Failed to {action}: {getattr(error, 'user_message', None) or str(error)}"
    if isinstance(error, stripe.CardError):
        return ProcessorDeclined(message, code=getattr(error, "code", None))
    if isinstance(error, stripe.InvalidRequestError) and (
        getattr(error, "code", None) == "resource_missing"
        or getattr(error, "http_status", None) == 404
    ):
        return ProcessorNotFound(message, code=getattr(error, "code", None))
    if isinstance(
        error, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)
    ):
        return ProcessorTransient(message)
    return ProcessorError(message)


class StripeProcessor(PaymentProcessor):
    """Payment processor backed by a `stripe.StripeClient`."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        client: Optional[Any] = None,
    ):
        self.webhook_secret = webhook_secret or STRIPE_WEBHOOK_SECRET
        if client is None:
            client = stripe.StripeClient(
                api_key or STRIPE_SECRET_KEY or "",
                stripe_version=STRIPE_API_VERSION,
                max_network_retries=(
                    STRIPE_MAX_RETRIES if max_retries is None else max_retries
                ),
                http_client=stripe.RequestsClient(
                    timeout=STRIPE_TIMEOUT_SECONDS if timeout is None else timeout
                ),
            )
        self.client = client
        # Newer SDKs namespace the REST resources under `v1`
        self.api = getattr(client, "v1", client)

    def _call(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe error while trying to {action}: {str(e)}")
            raise translate_stripe_error(e, action) from e

    def create_customer(self, email: str, name: str) -> str:
        customer = self._call(
            "create customer",
            self.api.customers.create,
            params={"email": email, "name": name},
        )
        logger.info(f"Created Stripe customer {customer['id']} for {email}")
        return customer["id"]

    def create_subscription(
        self, customer_ref: str, price_ref: str, quantity: int
    ) -> ProcessorSubscription:
        logger.info(
            f"Creating Stripe subscription: customer={customer_ref} price={price_ref} quantity={quantity}"
        )
        subscription = self._call(
            "create subscription",
            self.api.subscriptions.create,
            params={
                "customer": customer_ref,
                "items": [{"price": price_ref, "quantity": quantity}],
                "payment_behavior": "default_incomplete",
                "payment_settings": {
                    "save_default_payment_method": "on_subscription"
                },
                "expand": ["latest_invoice.payment_intent"],
            },
        )
        logger.info(f"Stripe subscription created: {subscription['id']}")
        return subscription_from_stripe(subscription)

    def cancel_subscription(self, subscription_ref: str) -> None:
        self._call(
            "cancel subscription", self.api.subscriptions.cancel, subscription_ref
        )
        logger.info(f"Canceled Stripe subscription {subscription_ref}")

    def update_subscription_quantity(
        self, subscription_ref: str, quantity: int
    ) -> ProcessorSubscription:
        current = self._call(
            "retrieve subscription", self.api.subscriptions.retrieve, subscription_ref
        )
        item = _first_item(current)
        updated = self._call(
            "update subscription quantity",
            self.api.subscriptions.update,
            subscription_ref,
            params={"items": [{"id": item.get("id"), "quantity": quantity}]},
        )
        logger.info(
            f"Updated Stripe subscription {subscription_ref} quantity to {quantity}"
        )
        return subscription_from_stripe(updated)

    def create_setup_intent(self, customer_ref: str) -> str:
        setup_intent = self._call(
            "create setup intent",
            self.api.setup_intents.create,
            params={"customer": customer_ref, "payment_method_types": ["card"]},
        )
        return setup_intent["client_secret"]

    def parse_event(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        try:
            event = self.client.construct_event(
                payload, signature or "", self.webhook_secret
            )
        except ValueError as e:
            logger.error(f"Invalid payload: {e}")
            raise WebhookSignatureError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid signature: {e}")
            raise WebhookSignatureError("Invalid signature") from e

        logger.info(f"Received Stripe webhook event: {event.get('type')} id={event.get('id')}")
        return event_from_stripe(event)
