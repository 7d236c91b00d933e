import asyncio
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from src.seatledger import models, schemas
from src.seatledger.api.deps import get_processor, get_subscription_service, require
from src.seatledger.core.database import get_db
from src.seatledger.core.errors import WebhookSignatureError
from src.seatledger.core.permissions import Capability
from src.seatledger.services.processor import PaymentProcessor
from src.seatledger.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["Subscription"])


@router.post("/subscribe", response_model=schemas.SubscribeResponse)
def subscribe(
    data: schemas.SubscribeRequest,
    current_user: models.User = Depends(require(Capability.MANAGE_BILLING)),
    service: SubscriptionService = Depends(get_subscription_service),
    db: Session = Depends(get_db),
):
    """
    Subscribe the caller's organization to a plan for `quantity` seats.

    Returns the client secret the frontend uses to confirm the first payment.
    The organization becomes active once Stripe reports the payment.
    """
    checkout = service.subscribe(
        db, current_user.organization_id, data.plan_id, data.seat_quantity
    )
    return {
        "client_secret": checkout.client_secret,
        "subscription_id": checkout.subscription_ref,
        "order_id": checkout.order_id,
        "status": checkout.status,
    }


@router.post("/cancel", response_model=schemas.CancelResponse)
def cancel_subscription(
    current_user: models.User = Depends(require(Capability.MANAGE_BILLING)),
    service: SubscriptionService = Depends(get_subscription_service),
    db: Session = Depends(get_db),
):
    org = service.cancel(db, current_user.organization_id)
    return {
        "message": "Subscription canceled",
        "subscription_status": org.subscription_status,
    }


@router.post("/update-quantity", response_model=schemas.QuantityUpdateResponse)
def update_quantity(
    data: schemas.QuantityUpdateRequest,
    current_user: models.User = Depends(require(Capability.MANAGE_BILLING)),
    service: SubscriptionService = Depends(get_subscription_service),
    db: Session = Depends(get_db),
):
    """Change the number of paid seats; Stripe prorates the difference."""
    updated = service.change_seat_quantity(
        db, current_user.organization_id, data.quantity
    )
    return {
        "subscription_id": updated.subscription_ref,
        "status": updated.status,
        "quantity": updated.quantity,
        "current_period_start": updated.current_period_start,
        "current_period_end": updated.current_period_end,
    }


@router.post("/setup-intent", response_model=schemas.SetupIntentResponse)
def create_setup_intent(
    current_user: models.User = Depends(require(Capability.MANAGE_BILLING)),
    service: SubscriptionService = Depends(get_subscription_service),
    db: Session = Depends(get_db),
):
    return {
        "client_secret": service.create_setup_intent(db, current_user.organization_id)
    }


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="stripe-signature"),
    processor: PaymentProcessor = Depends(get_processor),
    service: SubscriptionService = Depends(get_subscription_service),
    db: Session = Depends(get_db),
):
    """
    Handle Stripe webhook events.

    - invoice.paid / invoice.payment_succeeded: order completed, organization active
    - invoice.payment_failed: order failed
    - charge.refunded: order refunded
    - customer.subscription.deleted: organization canceled

    Every verified delivery is acknowledged; reconciliation problems are
    recorded on the webhook_events table instead of failing the delivery.
    """
    payload = await request.body()
    logger.info(f"Incoming webhook: payload_len={len(payload)}")

    try:
        event = processor.parse_event(payload, stripe_signature)
    except WebhookSignatureError as e:
        logger.error(f"Rejected webhook: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    logger.info(f"Received Stripe webhook event: {event.raw_type} id={event.id}")

    # Reconciliation takes organization locks; keep it off the event loop
    result = await asyncio.to_thread(service.reconcile_webhook_event, db, event)
    return {"received": True, "event_id": result.event_id, "outcome": result.outcome}
