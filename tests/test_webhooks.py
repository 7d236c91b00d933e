from datetime import timedelta

import pytest

from src.seatledger import models
from src.seatledger.models import OrderStatus, SubscriptionStatus
from src.seatledger.services.processor import EventType, ProcessorEvent
from src.seatledger.utils.timeutils import utcnow


@pytest.fixture
def subscribed(db, service, organization, standard_plan):
    """Organization with a pending 3-seat Standard subscription."""
    checkout = service.subscribe(db, organization.id, standard_plan.id, 3)
    order = db.get(models.Order, checkout.order_id)
    return organization, order


def _event(event_id, event_type, order=None, subscription_ref=None, seconds=10, **extra):
    fields = {
        "payment_intent_ref": order.stripe_payment_intent_id if order else None,
        "invoice_ref": order.stripe_invoice_id if order else None,
        "subscription_ref": subscription_ref
        or (order.stripe_subscription_id if order else None),
    }
    fields.update(extra)
    return ProcessorEvent(
        id=event_id,
        type=event_type,
        raw_type=event_type.value,
        created=utcnow() + timedelta(seconds=seconds),
        **fields,
    )


def test_payment_succeeded_completes_order_and_activates(db, service, subscribed):
    org, order = subscribed

    result = service.reconcile_webhook_event(db, _event("evt_1", EventType.PAYMENT_SUCCEEDED, order))

    assert result.outcome == "processed"
    db.refresh(org)
    db.refresh(order)
    assert order.status == OrderStatus.COMPLETED.value
    assert org.subscription_status == SubscriptionStatus.ACTIVE.value
    assert db.get(models.WebhookEvent, "evt_1").status == "processed"


def test_duplicate_delivery_is_a_noop(db, service, subscribed):
    org, order = subscribed
    event = _event("evt_1", EventType.PAYMENT_SUCCEEDED, order)

    service.reconcile_webhook_event(db, event)
    db.refresh(org)
    changed_at = org.status_changed_at

    again = service.reconcile_webhook_event(db, event)

    assert again.outcome == "duplicate"
    db.refresh(org)
    db.refresh(order)
    assert order.status == OrderStatus.COMPLETED.value
    assert org.subscription_status == SubscriptionStatus.ACTIVE.value
    assert org.status_changed_at == changed_at
    assert db.query(models.Order).count() == 1
    assert db.query(models.WebhookEvent).count() == 1


def test_distinct_events_for_same_payment_are_idempotent(db, service, subscribed):
    org, order = subscribed

    service.reconcile_webhook_event(db, _event("evt_paid", EventType.PAYMENT_SUCCEEDED, order))
    service.reconcile_webhook_event(
        db, _event("evt_succeeded", EventType.PAYMENT_SUCCEEDED, order, seconds=11)
    )

    db.refresh(org)
    db.refresh(order)
    assert order.status == OrderStatus.COMPLETED.value
    assert org.subscription_status == SubscriptionStatus.ACTIVE.value
    assert db.query(models.Order).count() == 1


def test_payment_failed_leaves_organization_alone(db, service, subscribed):
    org, order = subscribed

    service.reconcile_webhook_event(db, _event("evt_1", EventType.PAYMENT_FAILED, order))

    db.refresh(org)
    db.refresh(order)
    assert order.status == OrderStatus.FAILED.value
    assert org.subscription_status == SubscriptionStatus.TRIALING.value


def test_late_failure_never_downgrades_completed_order(db, service, subscribed):
    org, order = subscribed

    service.reconcile_webhook_event(db, _event("evt_ok", EventType.PAYMENT_SUCCEEDED, order, seconds=20))
    service.reconcile_webhook_event(db, _event("evt_fail", EventType.PAYMENT_FAILED, order, seconds=10))

    db.refresh(order)
    assert order.status == OrderStatus.COMPLETED.value


def test_retry_after_failure_completes_order(db, service, subscribed):
    org, order = subscribed

    service.reconcile_webhook_event(db, _event("evt_fail", EventType.PAYMENT_FAILED, order, seconds=10))
    service.reconcile_webhook_event(db, _event("evt_ok", EventType.PAYMENT_SUCCEEDED, order, seconds=20))

    db.refresh(org)
    db.refresh(order)
    assert order.status == OrderStatus.COMPLETED.value
    assert org.subscription_status == SubscriptionStatus.ACTIVE.value


@pytest.mark.parametrize("deleted_first", [False, True])
def test_status_follows_processor_clock_not_arrival(db, service, subscribed, deleted_first):
    org, order = subscribed
    paid = _event("evt_paid", EventType.PAYMENT_SUCCEEDED, order, seconds=10)
    deleted = _event("evt_deleted", EventType.SUBSCRIPTION_DELETED, order, seconds=20)

    for event in ([deleted, paid] if deleted_first else [paid, deleted]):
        service.reconcile_webhook_event(db, event)

    db.refresh(org)
    db.refresh(order)
    assert org.subscription_status == SubscriptionStatus.CANCELED.value
    assert order.status == OrderStatus.COMPLETED.value


def test_canceled_organization_is_not_revived_by_payment(db, service, subscribed):
    org, order = subscribed
    service.cancel(db, org.id)

    result = service.reconcile_webhook_event(
        db, _event("evt_paid", EventType.PAYMENT_SUCCEEDED, order, seconds=30)
    )

    assert result.outcome == "ignored"
    db.refresh(org)
    assert org.subscription_status == SubscriptionStatus.CANCELED.value


def test_subscription_deleted_for_superseded_subscription_is_ignored(db, service, subscribed, standard_plan):
    org, order = subscribed
    service.cancel(db, org.id)
    fresh = service.subscribe(db, org.id, standard_plan.id, 2)

    result = service.reconcile_webhook_event(
        db, _event("evt_old", EventType.SUBSCRIPTION_DELETED, subscription_ref=order.stripe_subscription_id)
    )

    assert result.outcome == "ignored"
    db.refresh(org)
    assert org.stripe_subscription_id == fresh.subscription_ref
    assert org.subscription_status == SubscriptionStatus.TRIALING.value


def test_refund_moves_completed_order(db, service, subscribed):
    org, order = subscribed
    service.reconcile_webhook_event(db, _event("evt_paid", EventType.PAYMENT_SUCCEEDED, order))

    service.reconcile_webhook_event(
        db, _event("evt_refund", EventType.PAYMENT_REFUNDED, order, seconds=20)
    )

    db.refresh(order)
    assert order.status == OrderStatus.REFUNDED.value


def test_renewal_invoice_appends_order(db, service, subscribed):
    org, order = subscribed
    service.reconcile_webhook_event(db, _event("evt_paid", EventType.PAYMENT_SUCCEEDED, order))

    renewal = _event(
        "evt_renewal",
        EventType.PAYMENT_SUCCEEDED,
        subscription_ref=order.stripe_subscription_id,
        payment_intent_ref="pi_renewal",
        invoice_ref="in_renewal",
        amount=14997,
        seconds=60,
    )
    service.reconcile_webhook_event(db, renewal)

    orders = service.orders.list_for_organization(db, org.id)
    assert len(orders) == 2
    latest = next(o for o in orders if o.stripe_invoice_id == "in_renewal")
    assert latest.status == OrderStatus.COMPLETED.value
    assert latest.seat_quantity == 3
    assert latest.amount == 14997


def test_unknown_reference_is_recorded_not_raised(db, service, subscribed):
    result = service.reconcile_webhook_event(
        db,
        _event(
            "evt_ghost",
            EventType.PAYMENT_SUCCEEDED,
            subscription_ref="sub_ghost",
            payment_intent_ref="pi_ghost",
            invoice_ref="in_ghost",
        ),
    )

    assert result.outcome == "failed"
    assert db.get(models.WebhookEvent, "evt_ghost").status == "failed"


def test_event_without_references_fails_softly(db, service):
    result = service.reconcile_webhook_event(db, _event("evt_empty", EventType.PAYMENT_FAILED))

    assert result.outcome == "failed"


def test_unhandled_event_type_is_ignored(db, service, subscribed):
    org, order = subscribed
    event = ProcessorEvent(
        id="evt_misc", type=EventType.UNKNOWN, raw_type="customer.updated", created=utcnow()
    )

    result = service.reconcile_webhook_event(db, event)

    assert result.outcome == "ignored"
    db.refresh(org)
    db.refresh(order)
    assert org.subscription_status == SubscriptionStatus.TRIALING.value
    assert order.status == OrderStatus.PENDING.value


def test_payment_received_before_subscribe_is_applied_once_stored(
    db, service, processor, organization, standard_plan
):
    # The fake processor numbers ids per call: cus_1 at registration, then sub_2/pi_2/in_2
    early = service.reconcile_webhook_event(
        db,
        _event(
            "evt_early",
            EventType.PAYMENT_SUCCEEDED,
            subscription_ref="sub_2",
            payment_intent_ref="pi_2",
            invoice_ref="in_2",
            amount=14997,
            seconds=60,
        ),
    )
    assert early.outcome == "failed"

    checkout = service.subscribe(db, organization.id, standard_plan.id, 3)

    assert checkout.subscription_ref == "sub_2"
    assert checkout.status == SubscriptionStatus.ACTIVE.value
    order = db.get(models.Order, checkout.order_id)
    db.refresh(organization)
    assert order.status == OrderStatus.COMPLETED.value
    assert organization.subscription_status == SubscriptionStatus.ACTIVE.value
    assert db.get(models.WebhookEvent, "evt_early").status == "processed"
    assert db.query(models.Order).count() == 1


def test_unrelated_failed_events_are_not_replayed(db, service, organization, standard_plan):
    service.reconcile_webhook_event(
        db,
        _event(
            "evt_ghost",
            EventType.PAYMENT_SUCCEEDED,
            subscription_ref="sub_ghost",
            payment_intent_ref="pi_ghost",
        ),
    )

    checkout = service.subscribe(db, organization.id, standard_plan.id, 3)

    assert checkout.status == SubscriptionStatus.TRIALING.value
    assert db.get(models.WebhookEvent, "evt_ghost").status == "failed"
