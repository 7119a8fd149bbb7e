# storefront/services/maintenance.py
"""
Scheduled housekeeping (APScheduler jobs registered in main.py).
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from storefront.config import get_db, settings
from storefront.repositories import webhook_events

logger = logging.getLogger("storefront.maintenance")


def prune_webhook_events(db=None, now: Optional[datetime] = None) -> int:
    """
    Deletes webhook-ledger entries older than the retention window.
    PayPal stops redelivering after a few days, so old event ids are no
    longer needed for duplicate detection.
    Returns the number of entries removed.
    """
    db = db or get_db()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=settings.webhook_event_retention_days)
    removed = webhook_events.prune_older_than(db, cutoff)
    logger.info("Pruned %d webhook events received before %s", removed, cutoff.isoformat())
    return removed
