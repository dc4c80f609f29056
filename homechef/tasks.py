"""
Celery Tasks
Background jobs that keep the tip ledger consistent and exported.

Each run opens its own engine because every task drives its coroutine with
a fresh event loop (asyncio.run) and pooled async connections cannot cross
loops.
"""

import asyncio
import time
from datetime import datetime
from typing import Optional

from celery.utils.log import get_task_logger

from homechef.celery_worker import celery_app
from homechef.core.config import get_settings
from homechef.database import create_engine, create_session_maker
from homechef.domain import TipStatus
from homechef.ledger import LedgerEngine
from homechef.services.ledger_export import LedgerExporter
from homechef.services.payment import get_payment_service
from homechef.stores.sql import SqlOrderStore, SqlTipStore

logger = get_task_logger(__name__)


async def _reconcile(min_age_seconds: float, database_url: Optional[str] = None) -> dict:
    settings = get_settings()
    engine = create_engine(database_url)
    try:
        session_maker = create_session_maker(engine)
        ledger = LedgerEngine(
            SqlTipStore(session_maker),
            SqlOrderStore(session_maker),
            get_payment_service(),
            settlement_timeout=settings.settlement_timeout_seconds,
            currency=settings.stripe_currency,
        )
        resolved = await ledger.reconcile_pending(min_age_seconds)
    finally:
        await engine.dispose()

    return {
        'resolved': len(resolved),
        'completed': sum(1 for tip in resolved if tip.status == TipStatus.COMPLETED),
        'failed': sum(1 for tip in resolved if tip.status == TipStatus.FAILED),
    }


async def _load_completed_tips(database_url: Optional[str] = None) -> list:
    engine = create_engine(database_url)
    try:
        store = SqlTipStore(create_session_maker(engine))
        return await store.list(status=TipStatus.COMPLETED)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def reconcile_pending_tips(self, min_age_seconds: Optional[float] = None) -> dict:
    """
    Resolve tips left pending after a settlement timeout.

    Asks the payment gateway what happened to each stale tip; never
    starts a new charge.
    """
    settings = get_settings()
    if min_age_seconds is None:
        min_age_seconds = settings.reconciliation_min_age_seconds

    task_id = self.request.id
    logger.info(f"Task {task_id}: Reconciling tips pending for more than {min_age_seconds}s")
    start_time = time.time()

    result = asyncio.run(_reconcile(min_age_seconds))

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed
    logger.info(f"Task {task_id}: {result['resolved']} tips resolved in {elapsed}s")
    return result


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_ledger_to_excel(self) -> dict:
    """
    Append completed tips to the Excel ledger.

    Tips already in the workbook are skipped, so the task can run on a schedule.
    """
    task_id = self.request.id
    start_time = time.time()

    tips = asyncio.run(_load_completed_tips())
    result = LedgerExporter().export_tips(tips)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"Task {task_id}: {result['message']} in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: Ledger export failed - {result['message']}")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
