"""
Order ledger: append-only record of billing transactions.

Orders are written once per accepted subscribe attempt and afterwards only
their status moves, driven by webhook reconciliation. Status moves are
monotonic so that events arriving out of order converge on the same result.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from src.seatledger import models
from src.seatledger.models import OrderStatus
from src.seatledger.services.processor import ProcessorSubscription

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from
ORDER_TRANSITIONS = {
    OrderStatus.COMPLETED: frozenset({OrderStatus.PENDING, OrderStatus.FAILED}),
    OrderStatus.FAILED: frozenset({OrderStatus.PENDING}),
    OrderStatus.REFUNDED: frozenset({OrderStatus.COMPLETED}),
}


class OrderLedger:

    def record_pending(
        self,
        db: Session,
        org: models.Organization,
        plan: models.Plan,
        seat_quantity: int,
        subscription: ProcessorSubscription,
    ) -> models.Order:
        """Append a pending order; the caller commits."""
        order = models.Order(
            organization_id=org.id,
            plan_id=plan.id,
            plan_name=plan.name,
            unit_price=plan.price,
            seat_quantity=seat_quantity,
            amount=plan.price * seat_quantity,
            currency=plan.currency,
            status=OrderStatus.PENDING.value,
            stripe_payment_intent_id=subscription.payment_intent_ref,
            stripe_invoice_id=subscription.invoice_ref,
            stripe_subscription_id=subscription.subscription_ref,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
        )
        db.add(order)
        db.flush()
        logger.info(
            f"Order {order.id} created for organization {org.id}: "
            f"{seat_quantity} x {plan.price} = {order.amount} {order.currency}"
        )
        return order

    def record_renewal(
        self,
        db: Session,
        org: models.Organization,
        status: OrderStatus,
        invoice_ref: str,
        payment_intent_ref: Optional[str] = None,
        amount: Optional[int] = None,
        period_start=None,
        period_end=None,
    ) -> models.Order:
        """Append the order for a processor-initiated renewal invoice.

        The seat quantity is carried over from the subscription's latest order.
        """
        plan = org.plan
        previous = (
            db.query(models.Order)
            .filter(
                models.Order.stripe_subscription_id == org.stripe_subscription_id
            )
            .order_by(models.Order.id.desc())
            .first()
        )
        seat_quantity = previous.seat_quantity if previous else max(plan.min_users, 1)
        order = models.Order(
            organization_id=org.id,
            plan_id=plan.id,
            plan_name=plan.name,
            unit_price=plan.price,
            seat_quantity=seat_quantity,
            amount=amount if amount is not None else plan.price * seat_quantity,
            currency=plan.currency,
            status=status.value,
            stripe_payment_intent_id=payment_intent_ref,
            stripe_invoice_id=invoice_ref,
            stripe_subscription_id=org.stripe_subscription_id,
            period_start=period_start,
            period_end=period_end,
        )
        db.add(order)
        db.flush()
        logger.info(
            f"Renewal order {order.id} ({status.value}) recorded for organization {org.id}, "
            f"invoice {invoice_ref}"
        )
        return order

    def find_by_payment_ref(
        self,
        db: Session,
        payment_intent_ref: Optional[str] = None,
        invoice_ref: Optional[str] = None,
    ) -> Optional[models.Order]:
        if payment_intent_ref:
            order = (
                db.query(models.Order)
                .filter(models.Order.stripe_payment_intent_id == payment_intent_ref)
                .first()
            )
            if order:
                return order
        if invoice_ref:
            return (
                db.query(models.Order)
                .filter(models.Order.stripe_invoice_id == invoice_ref)
                .first()
            )
        return None

    def list_for_organization(
        self, db: Session, organization_id: int
    ) -> List[models.Order]:
        return (
            db.query(models.Order)
            .filter(models.Order.organization_id == organization_id)
            .order_by(models.Order.created_at.desc(), models.Order.id.desc())
            .all()
        )

    def _transition(self, order: models.Order, target: OrderStatus) -> bool:
        current = OrderStatus(order.status)
        if current == target:
            return False
        if current not in ORDER_TRANSITIONS[target]:
            logger.info(
                f"Order {order.id} stays {current.value}; {target.value} not reachable from it"
            )
            return False
        order.status = target.value
        logger.info(f"Order {order.id} status {current.value} -> {target.value}")
        return True

    def mark_completed(self, order: models.Order) -> bool:
        return self._transition(order, OrderStatus.COMPLETED)

    def mark_failed(self, order: models.Order) -> bool:
        return self._transition(order, OrderStatus.FAILED)

    def mark_refunded(self, order: models.Order) -> bool:
        return self._transition(order, OrderStatus.REFUNDED)


# Global instance
order_ledger = OrderLedger()
