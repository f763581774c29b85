"""Worker process for the scheduled accrual batch.

Runs an asyncio loop that, for every organization, posts the accruals and
carryover expiries due today and then checks the ledger against the
balance summaries.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from app.config import LOG_FORMAT, get_settings
from app.db import get_session_factory
from app.services.accrual import run_accrual
from app.services.balance import check_balance_integrity
from app.services.calendar import resolve_timezone
from app.services.organization import get_organization_service

logger = logging.getLogger(__name__)


async def run_once() -> None:
    """One pass over every organization."""
    session_factory = get_session_factory()
    organizations = await get_organization_service().list_organizations()

    for organization in organizations:
        today = datetime.now(resolve_timezone(organization.timezone)).date()
        try:
            async with session_factory() as session:
                result = await run_accrual(session, organization.id, today)
                drifts = await check_balance_integrity(session, organization.id)
        except Exception:
            logger.exception("Accrual run failed for organization=%s as_of=%s", organization.id, today)
            continue

        logger.info(
            "Accrual run complete for organization=%s as_of=%s: processed=%d posted=%d skipped=%d errors=%d",
            organization.id,
            today,
            result.employees_processed,
            result.events_posted,
            result.skipped,
            result.errors,
        )
        for drift in drifts:
            logger.error(
                "Balance drift employee=%s leave_type=%s summary=%s ledger=%s",
                drift.employee_id,
                drift.leave_type_id,
                drift.summary_balance,
                drift.ledger_balance,
            )


async def run_accrual_loop() -> None:
    """Main worker loop."""
    interval = get_settings().accrual_interval_seconds
    logger.info("Accrual worker started (interval %ds)", interval)
    while True:
        await run_once()
        await asyncio.sleep(interval)


def main() -> None:
    """Entry point for the worker process."""
    logging.basicConfig(level=get_settings().log_level.upper(), format=LOG_FORMAT)
    asyncio.run(run_accrual_loop())


if __name__ == "__main__":
    main()
