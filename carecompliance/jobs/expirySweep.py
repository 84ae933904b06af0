"""
Credential Expiry Sweep -- Scheduled Job.

The lifecycle core owns no timers.  An external scheduler (cron, Celery Beat,
a job queue) calls this sweep, typically once per day, which:

1. Pages through every credential record (optionally for one organisation),
   finishing each page before the next one is read.
2. Expires cleared credentials whose expiry date and grace period have both
   passed, through the state machine so guards, audit and notifications
   apply exactly as for a manual transition.
3. Sends reminder notifications on the configured day thresholds before
   expiry (90 / 60 / 30 / 14 / 7 by default).
4. Returns counts plus a compliance snapshot of the post-sweep state.

Usage with a simple cron runner::

    python -m carecompliance.jobs.expirySweep
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from carecompliance.core.config import settings
from carecompliance.events.credentialEvents import expiry_reminder_event
from carecompliance.models.credential import CredentialRecord, CredentialStatus
from carecompliance.services import expiryCalculator
from carecompliance.services.complianceAggregator import ComplianceSnapshot, ComplianceTally
from carecompliance.services.credentialService import CredentialLifecycleService
from carecompliance.services.credentialStateManager import SYSTEM_ACTOR, Expire

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweepResult:
    """Result of one sweep run."""
    scanned: int
    expired: int
    expire_failures: int
    reminders_sent: int
    snapshot: ComplianceSnapshot


async def send_expiry_reminders(
    service: CredentialLifecycleService,
    records: Iterable[CredentialRecord],
    now: datetime,
    reminder_days: Sequence[int],
) -> int:
    """Notify for each cleared record exactly ``N`` days from expiry, for
    every ``N`` in ``reminder_days``.  Returns the number of reminders sent."""
    thresholds = set(reminder_days)
    sent = 0
    for record in records:
        if record.status != CredentialStatus.CLEARED:
            continue
        days = expiryCalculator.days_until_expiry(now, record.expiry_date)
        if days is None or days not in thresholds:
            continue
        event = expiry_reminder_event(record, now, days)
        try:
            await service.notifications.notify(event)
        except Exception:
            logger.exception("Expiry reminder failed for credential %s", record.id)
            continue
        sent += 1
    return sent


async def run_expiry_sweep(
    service: CredentialLifecycleService,
    *,
    organization_id: Optional[uuid.UUID] = None,
    reminder_days: Optional[Sequence[int]] = None,
) -> ExpirySweepResult:
    """Execute the full expiry sweep workflow, one store page at a time.

    Each page is expired, reminded and tallied before the next page is read,
    so memory stays bounded by the configured page size.
    """
    now = service.clock.now()
    logger.info("Starting expiry sweep at %s (org=%s)", now.isoformat(), organization_id)

    thresholds = reminder_days if reminder_days is not None else settings.reminder_days
    tally = ComplianceTally(now, expiring_within_days=settings.expiry_warning_days)
    scanned = 0
    expired = 0
    failures = 0
    reminders = 0

    async for page in service.iter_pages(organization_id=organization_id):
        current: list[CredentialRecord] = []
        for record in page:
            if record.status == CredentialStatus.CLEARED and expiryCalculator.is_lapsed(
                now, record.expiry_date, record.grace_period_days
            ):
                outcome = await service.apply(record.id, Expire(), SYSTEM_ACTOR)
                if outcome.ok:
                    expired += 1
                    record = outcome.record
                else:
                    failures += 1
                    logger.warning(
                        "Could not expire credential %s: %s",
                        record.id,
                        outcome.error.message,
                    )
                    # Report on the freshest state we can see
                    record = await service.get(record.id) or record
            current.append(record)

        reminders += await send_expiry_reminders(service, current, now, thresholds)
        tally.add_all(current)
        scanned += len(page)
        logger.debug("Expiry sweep page done: scanned=%d, expired=%d", scanned, expired)

    snapshot = tally.snapshot()

    logger.info(
        "Expiry sweep completed: scanned=%d, expired=%d, failures=%d, reminders=%d, "
        "compliance_rate=%.3f",
        scanned,
        expired,
        failures,
        reminders,
        snapshot.compliance_rate,
    )

    return ExpirySweepResult(
        scanned=scanned,
        expired=expired,
        expire_failures=failures,
        reminders_sent=reminders,
        snapshot=snapshot,
    )


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Run the sweep against the configured database in one transaction."""
    from carecompliance.core.database import get_session_factory
    from carecompliance.services.collaborators import SystemClock
    from carecompliance.services.credentialStore import SqlAlchemyCredentialStore

    async with get_session_factory()() as session:
        try:
            service = CredentialLifecycleService(
                SqlAlchemyCredentialStore(session),
                SystemClock(),
            )
            result = await run_expiry_sweep(service)
            await session.commit()
            print(f"Expiry sweep completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Expiry sweep failed")
            raise


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_cli_main())
