"""
Subscription orchestrator.

Drives plan changes against the payment processor and reconciles the
processor's webhook events with local state.

Lifecycle per organization::

    trialing -> active -> canceled | expired
    trialing -> canceled | expired

``canceled`` and ``expired`` are terminal; re-subscribing creates a fresh
processor subscription through ``subscribe``.

All local writes of a client action happen only after the processor call
succeeded, so a failed call leaves the organization and order tables
untouched and the action can simply be retried.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.seatledger import models
from src.seatledger.core.errors import (
    BillingError,
    InvalidQuantity,
    InvariantViolation,
    NoActiveSubscription,
    OrganizationBusy,
    ProcessorError,
    SeatLimitExceeded,
    ValidationError,
)
from src.seatledger.core.locks import OrganizationLocks, organization_locks
from src.seatledger.models import OrderStatus, SubscriptionStatus
from src.seatledger.services.order_ledger import OrderLedger, order_ledger
from src.seatledger.services.organization_ledger import (
    TERMINAL_STATUSES,
    OrganizationLedger,
    organization_ledger,
)
from src.seatledger.services.plan_catalog import PlanCatalog, plan_catalog
from src.seatledger.services.processor import (
    EventType,
    PaymentProcessor,
    ProcessorEvent,
    ProcessorSubscription,
)
from src.seatledger.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# Webhook outcomes recorded on WebhookEvent.status
PROCESSED = "processed"
IGNORED = "ignored"
FAILED = "failed"
DUPLICATE = "duplicate"


@dataclass
class SubscriptionCheckout:
    """Handle the client uses to confirm the first payment."""

    client_secret: Optional[str]
    subscription_ref: str
    order_id: int
    status: str


@dataclass
class ReconciliationResult:
    event_id: str
    event_type: str
    outcome: str
    detail: Optional[str] = None


def _event_from_record(record: models.WebhookEvent) -> Optional[ProcessorEvent]:
    if not record.event_type:
        return None
    return ProcessorEvent(
        id=record.id,
        type=EventType(record.event_type),
        raw_type=record.type,
        created=record.occurred_at,
        payment_intent_ref=record.payment_intent_ref,
        invoice_ref=record.invoice_ref,
        subscription_ref=record.subscription_ref,
        amount=record.amount,
        period_start=record.period_start,
        period_end=record.period_end,
    )


def _local_status(processor_status: Optional[str], current: str) -> SubscriptionStatus:
    """Map a processor subscription status onto the organization lifecycle."""
    if processor_status == SubscriptionStatus.ACTIVE.value:
        return SubscriptionStatus.ACTIVE
    if processor_status == SubscriptionStatus.TRIALING.value:
        return SubscriptionStatus.TRIALING
    # Awaiting the first payment (e.g. "incomplete")
    current_status = SubscriptionStatus(current)
    if current_status in TERMINAL_STATUSES:
        return SubscriptionStatus.TRIALING
    return current_status


class SubscriptionService:

    def __init__(
        self,
        processor: PaymentProcessor,
        catalog: Optional[PlanCatalog] = None,
        ledger: Optional[OrganizationLedger] = None,
        orders: Optional[OrderLedger] = None,
        locks: Optional[OrganizationLocks] = None,
    ):
        self.processor = processor
        self.catalog = catalog or plan_catalog
        self.ledger = ledger or organization_ledger
        self.orders = orders or order_ledger
        self.locks = locks or organization_locks

    # --- Client actions ---

    def subscribe(
        self, db: Session, organization_id: int, plan_id: int, seat_quantity: int
    ) -> SubscriptionCheckout:
        """Start a subscription to `plan` for `seat_quantity` seats.

        Raises:
            InvalidQuantity: quantity outside the plan's seat bounds
            SeatLimitExceeded: the organization already uses more seats than
                the plan allows
            ProcessorError: the processor refused or failed; nothing written
        """
        plan = self.catalog.get(db, plan_id)
        if not plan.is_active:
            raise ValidationError("Plan is no longer available", plan_id=plan.id)

        if not isinstance(seat_quantity, int) or not (
            plan.min_users <= seat_quantity <= plan.max_users
        ):
            raise InvalidQuantity(
                f"User quantity must be between {plan.min_users} and {plan.max_users}",
                quantity=seat_quantity,
            )

        with self.locks.hold(organization_id):
            org = self.ledger.get(db, organization_id)
            db.refresh(org)

            if org.active_seat_count > plan.max_users:
                raise SeatLimitExceeded(
                    f"Cannot switch to {plan.name} (limit {plan.max_users}); "
                    f"{org.active_seat_count} users are active",
                    organization_id=org.id,
                )

            superseded_ref = None
            if org.stripe_subscription_id and (
                SubscriptionStatus(org.subscription_status) not in TERMINAL_STATUSES
            ):
                superseded_ref = org.stripe_subscription_id

            subscription = self.processor.create_subscription(
                customer_ref=org.stripe_customer_id,
                price_ref=plan.stripe_price_id,
                quantity=seat_quantity,
            )

            try:
                order = self.orders.record_pending(
                    db, org, plan, seat_quantity, subscription
                )
                self.ledger.set_plan(
                    db,
                    org,
                    plan,
                    subscription.subscription_ref,
                    _local_status(subscription.status, org.subscription_status),
                    changed_at=subscription.created_at or utcnow(),
                )
                db.commit()
            except Exception:
                db.rollback()
                logger.exception(
                    f"Failed to persist subscription {subscription.subscription_ref} "
                    f"for organization {organization_id}"
                )
                self._cancel_at_processor(subscription.subscription_ref, "orphaned")
                raise

            logger.info(
                f"Organization {org.id} subscribed to plan {plan.id} ({plan.name}) "
                f"x{seat_quantity}: subscription={subscription.subscription_ref} order={order.id}"
            )

            if superseded_ref:
                self._cancel_at_processor(superseded_ref, "superseded")
            self._replay_unmatched_events(db, subscription)

            db.refresh(org)
            return SubscriptionCheckout(
                client_secret=subscription.payment_confirmation_handle,
                subscription_ref=subscription.subscription_ref,
                order_id=order.id,
                status=org.subscription_status,
            )

    def _cancel_at_processor(self, subscription_ref: str, reason: str) -> None:
        try:
            self.processor.cancel_subscription(subscription_ref)
            logger.info(f"Canceled {reason} subscription {subscription_ref}")
        except ProcessorError as e:
            logger.error(f"Could not cancel {reason} subscription {subscription_ref}: {e}")

    def _replay_unmatched_events(
        self, db: Session, subscription: ProcessorSubscription
    ) -> None:
        """Re-run failed events that arrived before this subscription was stored."""
        refs = [
            (models.WebhookEvent.subscription_ref, subscription.subscription_ref),
            (models.WebhookEvent.payment_intent_ref, subscription.payment_intent_ref),
            (models.WebhookEvent.invoice_ref, subscription.invoice_ref),
        ]
        conditions = [column == value for column, value in refs if value]
        records = (
            db.query(models.WebhookEvent)
            .filter(models.WebhookEvent.status == FAILED, or_(*conditions))
            .order_by(models.WebhookEvent.occurred_at, models.WebhookEvent.received_at)
            .all()
        )
        for record in records:
            event = _event_from_record(record)
            if event is None:
                continue
            try:
                result = self.reconcile_webhook_event(db, event)
                logger.info(f"Replayed webhook event {event.id} -> {result.outcome}")
            except Exception as e:
                db.rollback()
                logger.error(f"Replay of webhook event {event.id} failed: {e}")

    def _require_live_subscription(self, org: models.Organization) -> None:
        if not org.stripe_subscription_id or (
            SubscriptionStatus(org.subscription_status) in TERMINAL_STATUSES
        ):
            raise NoActiveSubscription("No active subscription", organization_id=org.id)

    def cancel(self, db: Session, organization_id: int) -> models.Organization:
        """Cancel the organization's subscription at the processor, then locally.

        Raises:
            NoActiveSubscription: nothing to cancel; the processor is not called
        """
        with self.locks.hold(organization_id):
            org = self.ledger.get(db, organization_id)
            db.refresh(org)
            self._require_live_subscription(org)

            self.processor.cancel_subscription(org.stripe_subscription_id)

            try:
                self.ledger.set_status(db, org, SubscriptionStatus.CANCELED)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(org)
            logger.info(
                f"Canceled subscription {org.stripe_subscription_id} for organization {org.id}"
            )
            return org

    def change_seat_quantity(
        self, db: Session, organization_id: int, new_quantity: int
    ) -> ProcessorSubscription:
        """Amend the subscribed seat quantity at the processor.

        Proration is left to the processor and no order is written.
        """
        with self.locks.hold(organization_id):
            org = self.ledger.get(db, organization_id)
            db.refresh(org)
            self._require_live_subscription(org)

            plan = org.plan
            if not isinstance(new_quantity, int) or not (
                plan.min_users <= new_quantity <= plan.max_users
            ):
                raise InvalidQuantity(
                    f"User quantity must be between {plan.min_users} and {plan.max_users}",
                    quantity=new_quantity,
                )

            updated = self.processor.update_subscription_quantity(
                org.stripe_subscription_id, new_quantity
            )
            logger.info(
                f"Subscription {org.stripe_subscription_id} for organization {org.id} "
                f"now has quantity {new_quantity}"
            )
            return updated

    def create_setup_intent(self, db: Session, organization_id: int) -> str:
        """Return the client handle for saving a card for the organization."""
        org = self.ledger.get(db, organization_id)
        return self.processor.create_setup_intent(org.stripe_customer_id)

    # --- Webhook reconciliation ---

    def reconcile_webhook_event(
        self, db: Session, event: ProcessorEvent
    ) -> ReconciliationResult:
        """Apply a processor event to local state.

        Safe to call any number of times for the same event and in any
        arrival order. Business-level failures are logged and recorded on the
        event's WebhookEvent row rather than raised, so the delivering
        transport can always acknowledge.
        """
        existing = db.get(models.WebhookEvent, event.id)
        if existing is not None and existing.status == PROCESSED:
            logger.info(f"Webhook event {event.id} already processed; skipping")
            return ReconciliationResult(event.id, event.raw_type, DUPLICATE)

        try:
            outcome, detail = self._dispatch(db, event)
        except OrganizationBusy:
            # Not recorded; the processor redelivers after a non-2xx response
            db.rollback()
            raise
        except BillingError as e:
            db.rollback()
            logger.warning(
                f"Reconciliation of webhook event {event.id} ({event.raw_type}) failed: {e.message}"
            )
            outcome, detail = FAILED, e.message

        try:
            self._record_event(db, event, outcome, detail)
            db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event recorded it first
            db.rollback()
            logger.info(f"Webhook event {event.id} recorded concurrently; skipping")
            return ReconciliationResult(event.id, event.raw_type, DUPLICATE)

        logger.info(
            f"Webhook event {event.id} ({event.raw_type}) -> {outcome}"
            + (f": {detail}" if detail else "")
        )
        return ReconciliationResult(event.id, event.raw_type, outcome, detail)

    def _record_event(
        self, db: Session, event: ProcessorEvent, outcome: str, detail: Optional[str]
    ) -> None:
        record = db.get(models.WebhookEvent, event.id)
        if record is None:
            record = models.WebhookEvent(id=event.id, type=event.raw_type)
            db.add(record)
        record.event_type = event.type.value
        record.occurred_at = event.created
        record.payment_intent_ref = event.payment_intent_ref
        record.invoice_ref = event.invoice_ref
        record.subscription_ref = event.subscription_ref
        record.amount = event.amount
        record.period_start = event.period_start
        record.period_end = event.period_end
        record.status = outcome
        record.detail = detail
        record.received_at = utcnow()

    def _dispatch(self, db: Session, event: ProcessorEvent) -> Tuple[str, Optional[str]]:
        if event.type == EventType.PAYMENT_SUCCEEDED:
            return self._on_payment(db, event, OrderStatus.COMPLETED)
        if event.type == EventType.PAYMENT_FAILED:
            return self._on_payment(db, event, OrderStatus.FAILED)
        if event.type == EventType.PAYMENT_REFUNDED:
            return self._on_refund(db, event)
        if event.type == EventType.SUBSCRIPTION_DELETED:
            return self._on_subscription_deleted(db, event)

        logger.info(f"Unhandled webhook event type: {event.raw_type}")
        return IGNORED, f"unhandled event type {event.raw_type}"

    def _on_payment(
        self, db: Session, event: ProcessorEvent, target: OrderStatus
    ) -> Tuple[str, Optional[str]]:
        if not (event.payment_intent_ref or event.invoice_ref or event.subscription_ref):
            return FAILED, "event carries no payment or subscription reference"

        org = None
        if event.subscription_ref:
            org = self.ledger.get_by_subscription_ref(db, event.subscription_ref)

        if org is None:
            order = self.orders.find_by_payment_ref(
                db, event.payment_intent_ref, event.invoice_ref
            )
            if order is None:
                return FAILED, "no matching order or subscription"
            self._move_order(order, target)
            db.flush()
            return PROCESSED, None

        with self.locks.hold(org.id):
            db.refresh(org)
            if org.stripe_subscription_id != event.subscription_ref:
                return IGNORED, f"subscription {event.subscription_ref} is no longer current"

            order = self.orders.find_by_payment_ref(
                db, event.payment_intent_ref, event.invoice_ref
            )
            if order is not None:
                self._move_order(order, target)
            elif event.invoice_ref:
                self.orders.record_renewal(
                    db,
                    org,
                    target,
                    invoice_ref=event.invoice_ref,
                    payment_intent_ref=event.payment_intent_ref,
                    amount=event.amount,
                    period_start=event.period_start,
                    period_end=event.period_end,
                )

            detail = None
            if target == OrderStatus.COMPLETED:
                detail = self._apply_status(db, org, SubscriptionStatus.ACTIVE, event)
            db.flush()
            return (IGNORED if detail else PROCESSED), detail

    def _move_order(self, order: models.Order, target: OrderStatus) -> None:
        if target == OrderStatus.COMPLETED:
            self.orders.mark_completed(order)
        elif target == OrderStatus.FAILED:
            self.orders.mark_failed(order)

    def _on_refund(self, db: Session, event: ProcessorEvent) -> Tuple[str, Optional[str]]:
        order = self.orders.find_by_payment_ref(
            db, event.payment_intent_ref, event.invoice_ref
        )
        if order is None:
            return FAILED, "no matching order"
        self.orders.mark_refunded(order)
        db.flush()
        return PROCESSED, None

    def _on_subscription_deleted(
        self, db: Session, event: ProcessorEvent
    ) -> Tuple[str, Optional[str]]:
        if not event.subscription_ref:
            return FAILED, "event carries no subscription reference"

        org = self.ledger.get_by_subscription_ref(db, event.subscription_ref)
        if org is None:
            return IGNORED, f"subscription {event.subscription_ref} is not current for any organization"

        with self.locks.hold(org.id):
            db.refresh(org)
            if org.stripe_subscription_id != event.subscription_ref:
                return IGNORED, f"subscription {event.subscription_ref} is no longer current"
            # Voluntary and involuntary (dunning) terminations both end as canceled
            detail = self._apply_status(db, org, SubscriptionStatus.CANCELED, event)
            db.flush()
            return (IGNORED if detail else PROCESSED), detail

    def _apply_status(
        self,
        db: Session,
        org: models.Organization,
        status: SubscriptionStatus,
        event: ProcessorEvent,
    ) -> Optional[str]:
        """Apply a webhook-driven status change in processor-event order.

        Returns a reason string when the change was not applied.
        """
        if (
            event.created is not None
            and org.status_changed_at is not None
            and event.created < org.status_changed_at
        ):
            logger.info(
                f"Skipping stale {status.value} for organization {org.id}: "
                f"event {event.created} < last change {org.status_changed_at}"
            )
            return f"stale event for organization {org.id}"

        try:
            self.ledger.set_status(db, org, status, changed_at=event.created)
        except InvariantViolation as e:
            logger.warning(f"Not applying {status.value} to organization {org.id}: {e.message}")
            return e.message
        return None
