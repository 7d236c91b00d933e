import itertools
import json
import os
import tempfile
from datetime import timedelta, timezone
from typing import Optional

# Keep the application's import-time engine away from the working directory
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="seatledger-"), "app.db"
)
os.environ.pop("STRIPE_SECRET_KEY", None)

import pytest
from sqlalchemy.orm import sessionmaker

from src.seatledger import models
from src.seatledger.core.database import build_engine
from src.seatledger.core.errors import WebhookSignatureError
from src.seatledger.core.locks import OrganizationLocks
from src.seatledger.services.order_ledger import OrderLedger
from src.seatledger.services.organization_ledger import OrganizationLedger
from src.seatledger.services.plan_catalog import PlanCatalog
from src.seatledger.services.processor import (
    PaymentProcessor,
    ProcessorEvent,
    ProcessorSubscription,
)
from src.seatledger.services.seat_manager import SeatManager
from src.seatledger.services.stripe_processor import event_from_stripe
from src.seatledger.services.subscription_service import SubscriptionService
from src.seatledger.utils.timeutils import utcnow

WEBHOOK_SIGNATURE = "t=1,v1=test"


class FakeProcessor(PaymentProcessor):
    """In-memory processor that records every call.

    Set ``fail_with[method_name]`` to an exception instance to make that
    method raise it.
    """

    def __init__(self):
        self.calls = []
        self.fail_with = {}
        self.subscriptions = {}
        self._ids = itertools.count(1)

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        error = self.fail_with.get(name)
        if error is not None:
            raise error

    def calls_to(self, name):
        return [call for call in self.calls if call[0] == name]

    def create_customer(self, email: str, name: str) -> str:
        self._record("create_customer", email, name)
        return f"cus_{next(self._ids)}"

    def create_subscription(
        self, customer_ref: str, price_ref: str, quantity: int
    ) -> ProcessorSubscription:
        self._record("create_subscription", customer_ref, price_ref, quantity)
        n = next(self._ids)
        now = utcnow()
        subscription = ProcessorSubscription(
            subscription_ref=f"sub_{n}",
            status="incomplete",
            current_period_start=now,
            current_period_end=now + timedelta(days=365),
            payment_confirmation_handle=f"pi_{n}_secret_{n}",
            payment_intent_ref=f"pi_{n}",
            invoice_ref=f"in_{n}",
            quantity=quantity,
            created_at=now,
        )
        self.subscriptions[subscription.subscription_ref] = subscription
        return subscription

    def cancel_subscription(self, subscription_ref: str) -> None:
        self._record("cancel_subscription", subscription_ref)

    def update_subscription_quantity(
        self, subscription_ref: str, quantity: int
    ) -> ProcessorSubscription:
        self._record("update_subscription_quantity", subscription_ref, quantity)
        subscription = self.subscriptions.get(subscription_ref) or ProcessorSubscription(
            subscription_ref=subscription_ref, status="active"
        )
        subscription.quantity = quantity
        return subscription

    def create_setup_intent(self, customer_ref: str) -> str:
        self._record("create_setup_intent", customer_ref)
        return f"seti_{next(self._ids)}_secret"

    def parse_event(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        if signature != WEBHOOK_SIGNATURE:
            raise WebhookSignatureError("Invalid signature")
        try:
            return event_from_stripe(json.loads(payload))
        except ValueError as e:
            raise WebhookSignatureError("Invalid payload") from e


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def locks():
    return OrganizationLocks(timeout=30)


@pytest.fixture
def catalog():
    return PlanCatalog()


@pytest.fixture
def ledger(catalog, locks):
    return OrganizationLedger(catalog, locks)


@pytest.fixture
def seats(ledger, locks):
    return SeatManager(ledger, locks)


@pytest.fixture
def orders():
    return OrderLedger()


@pytest.fixture
def service(processor, catalog, ledger, orders, locks):
    return SubscriptionService(processor, catalog, ledger, orders, locks)


def plan_spec(**overrides):
    spec = {
        "name": "Basic",
        "description": "Perfect for small teams",
        "price": 0,
        "min_users": 1,
        "max_users": 5,
        "features": ["Up to 5 team members"],
        "stripe_product_id": "prod_basic",
        "stripe_price_id": "price_basic",
    }
    spec.update(overrides)
    return spec


@pytest.fixture
def basic_plan(db, catalog):
    return catalog.create(db, plan_spec())


@pytest.fixture
def standard_plan(db, catalog):
    return catalog.create(
        db,
        plan_spec(
            name="Standard",
            price=4999,
            min_users=1,
            max_users=25,
            stripe_product_id="prod_standard",
            stripe_price_id="price_standard",
        ),
    )


@pytest.fixture
def organization(db, ledger, processor, basic_plan):
    org, _admin = ledger.register(
        db,
        processor,
        name="Acme",
        billing_email="owner@acme.com",
        admin_password="correct-horse",
    )
    return org


def stripe_event(event_id, event_type, obj, created):
    """A Stripe-shaped webhook event dict; `created` is a naive UTC datetime."""
    return {
        "id": event_id,
        "type": event_type,
        "created": int(created.replace(tzinfo=timezone.utc).timestamp()),
        "data": {"object": obj},
    }
