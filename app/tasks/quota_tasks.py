"""Celery tasks for daily quota bookkeeping."""

import asyncio
import logging
from typing import Any

# Import all models to ensure they're registered before creating session
import models  # noqa: F401

from app.celery_app import celery_app
from app.database import DB_URL, create_engine, create_session_factory
from app.domains.quota.service import QuotaLedger

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.quota_tasks.reset_daily_quotas_task", bind=True)
def reset_daily_quotas_task(self) -> dict[str, Any]:
    """Zero every user's consumption for the new day.

    Runs daily via Celery Beat. Safe to run again within the same day:
    users already reset in the current window are skipped.

    Returns:
        Dictionary with task execution statistics
    """
    logger.info(f"🚀 Starting daily quota reset (Task ID: {self.request.id})")

    try:
        reset_count = asyncio.run(_reset_daily_quotas_async())
        logger.info(f"✅ Daily quota reset completed: {reset_count} users reset")
        return {"users_reset": reset_count}

    except Exception as e:
        logger.error(f"❌ Daily quota reset failed: {str(e)}")
        raise self.retry(exc=e, countdown=60 * 5, max_retries=3)


async def _reset_daily_quotas_async() -> int:
    """Run the reset on a dedicated engine owned by this event loop."""
    engine = create_engine(DB_URL)
    try:
        ledger = QuotaLedger(create_session_factory(engine))
        return await ledger.reset_all()
    finally:
        await engine.dispose()
