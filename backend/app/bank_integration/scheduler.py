"""
Scheduled Bank Sync

Background task that periodically syncs every active connection across all
users over a short trailing window. Each connection runs in its own session
so one failing connection cannot affect the others.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional
from sqlalchemy.orm import Session

from backend.config import get_settings
from .connections import ConnectionManager
from .providers.base import BaseBankProvider
from .service import BankIntegrationService

logger = logging.getLogger(__name__)


async def run_scheduled_sync(
    session_factory: Callable[[], Session],
    provider: Optional[BaseBankProvider] = None,
    days_back: Optional[int] = None
) -> Dict[str, int]:
    """
    Sync all active connections once.

    Returns:
        {'connections': int, 'succeeded': int, 'failed': int}
    """
    settings = get_settings()
    days_back = days_back if days_back is not None else settings.scheduled_sync_days

    db = session_factory()
    try:
        connection_ids = [c.id for c in ConnectionManager(db).list_active()]
    finally:
        db.close()

    logger.info(f"Starting scheduled bank sync for {len(connection_ids)} connections")
    succeeded = 0
    failed = 0

    for connection_id in connection_ids:
        db = session_factory()
        try:
            service = BankIntegrationService(db, provider)
            connection = service.connections.get(connection_id)
            result = await service.sync(connection, days_back=days_back)
            succeeded += 1
            logger.info(
                f"Scheduled sync for connection {connection_id}: "
                f"{result['accounts_created']} accounts, {result['transactions_created']} transactions"
            )
        except Exception as e:
            failed += 1
            logger.error(f"Scheduled sync failed for connection {connection_id}: {e}")
        finally:
            db.close()

    logger.info(f"Scheduled bank sync finished: {succeeded} succeeded, {failed} failed")
    return {'connections': len(connection_ids), 'succeeded': succeeded, 'failed': failed}


async def sync_forever(
    session_factory: Callable[[], Session],
    interval_hours: Optional[float] = None
):
    """
    Run run_scheduled_sync every interval until cancelled.

    Runs as a task inside the API process; the service is single-process, so
    there is no separate worker or beat scheduler.
    """
    if interval_hours is None:
        interval_hours = get_settings().sync_interval_hours
    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            await run_scheduled_sync(session_factory)
        except Exception as e:
            logger.error(f"Scheduled bank sync pass failed: {e}")
