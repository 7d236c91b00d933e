"""
Expire organizations whose trial ended without a subscription.

Meant to be run daily from cron, e.g.:

    0 3 * * * cd /srv/seatledger && python scripts/expire_trials.py
"""
import logging
import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.seatledger.core.database import SessionLocal
from src.seatledger.services.organization_ledger import organization_ledger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def expire_trials():
    db = SessionLocal()
    try:
        expired = organization_ledger.expire_trials(db)
        logger.info(f"Trial expiry check complete: {len(expired)} organization(s) expired")
        return expired
    except Exception:
        logger.exception("Error in trial expiry check")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    expire_trials()
