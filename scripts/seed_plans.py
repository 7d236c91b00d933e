"""
Script to seed the plan catalog into the database.
Run this once before the first organization registers; registration needs
the Basic plan.

Stripe product/price ids are read from the environment so each deployment
can point at its own Stripe account.
"""
import os
import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.seatledger import models
from src.seatledger.core.database import SessionLocal, engine
from src.seatledger.services.plan_catalog import plan_catalog

PLANS = [
    {
        "name": "Basic",
        "description": "Perfect for small teams",
        "price": 0,
        "min_users": 1,
        "max_users": 5,
        "features": ["Up to 5 team members", "Basic features", "Email support"],
        "stripe_product_id": os.getenv("STRIPE_BASIC_PRODUCT_ID", "prod_basic"),
        "stripe_price_id": os.getenv("STRIPE_BASIC_PRICE_ID", "price_basic"),
    },
    {
        "name": "Standard",
        "description": "For growing teams",
        "price": 4999,
        "min_users": 1,
        "max_users": 25,
        "features": ["Up to 25 team members", "All Basic features", "Priority email support"],
        "stripe_product_id": os.getenv("STRIPE_STANDARD_PRODUCT_ID", "prod_standard"),
        "stripe_price_id": os.getenv("STRIPE_STANDARD_PRICE_ID", "price_standard"),
    },
    {
        "name": "Plus",
        "description": "For larger organizations",
        "price": 9999,
        "min_users": 5,
        "max_users": 100,
        "features": ["Up to 100 team members", "All Standard features", "Phone support"],
        "stripe_product_id": os.getenv("STRIPE_PLUS_PRODUCT_ID", "prod_plus"),
        "stripe_price_id": os.getenv("STRIPE_PLUS_PRICE_ID", "price_plus"),
    },
]


def seed_plans():
    models.Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        existing = {plan.name for plan in db.query(models.Plan).all()}
        created = []
        for spec in PLANS:
            if spec["name"] in existing:
                print(f"✓ Plan already exists: {spec['name']}")
                continue
            created.append(plan_catalog.create(db, spec))

        if created:
            print("✓ Successfully created plans:")
            for plan in created:
                print(
                    f"  - {plan.name}: {plan.price} {plan.currency}/seat/year "
                    f"({plan.min_users}-{plan.max_users} users)"
                )
    except Exception as e:
        print(f"✗ Error seeding plans: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    print("Seeding plans...")
    seed_plans()
