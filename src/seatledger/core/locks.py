"""
Per-organization locks

Serialises the check-then-act sequences (seat checks, subscribe, cancel,
webhook reconciliation) for one organization while letting different
organizations proceed in parallel. Locks live in process memory; the seat
counter is additionally protected by a conditional UPDATE at the storage
layer for multi-process deployments.
"""

import logging
import os
import threading
from contextlib import contextmanager
from typing import Dict, Optional

from dotenv import load_dotenv

from src.seatledger.core.errors import OrganizationBusy

load_dotenv()

logger = logging.getLogger(__name__)

ORG_LOCK_TIMEOUT_SECONDS = float(os.getenv("ORG_LOCK_TIMEOUT_SECONDS", "10"))


class OrganizationLocks:
    """Registry of re-entrant locks keyed by organization id."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = ORG_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        self._locks: Dict[int, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, organization_id: int) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(organization_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[organization_id] = lock
            return lock

    @contextmanager
    def hold(self, organization_id: int):
        """Hold the lock for `organization_id` for the duration of the block.

        Raises:
            OrganizationBusy: if the lock is not acquired within the timeout
        """
        lock = self._lock_for(organization_id)
        if not lock.acquire(timeout=self.timeout):
            logger.warning(
                f"Timed out after {self.timeout}s waiting for organization {organization_id}"
            )
            raise OrganizationBusy(
                "Organization is busy, please retry", organization_id=organization_id
            )
        try:
            yield
        finally:
            lock.release()


# Global lock registry instance
organization_locks = OrganizationLocks()
