"""Daily maintenance task: expiry sweep, orphan purge, audit retention."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from enforcer.audit.protocol import AuditBackend
from enforcer.constants import (
    DEFAULT_AUDIT_RETENTION_DAYS,
    DEFAULT_ORPHAN_GRACE_MINUTES,
    DEFAULT_SWEEP_HOUR_UTC,
    SWEEP_RETRY_SECONDS,
)
from enforcer.governance.engine import GovernanceEngine
from enforcer.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)


def seconds_until(hour_utc: int, now: Optional[datetime] = None) -> float:
    """Seconds from ``now`` until the next ``hour_utc``:00 UTC.

    If the server starts at 02:59 with hour_utc=3, the first run is in one
    minute. At 03:01 it is almost a day away.
    """
    now = now or datetime.now(timezone.utc)
    next_run = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def run_maintenance_once(
    engine: GovernanceEngine,
    audit_backend: AuditBackend,
    orphan_grace: timedelta = timedelta(minutes=DEFAULT_ORPHAN_GRACE_MINUTES),
    audit_retention_days: int = DEFAULT_AUDIT_RETENTION_DAYS,
) -> dict:
    with PerformanceLogger("expiry_sweep", logger):
        result = await engine.replace_expired_keys_and_notify_users()
    purged = await engine.purge_orphaned_records(orphan_grace)
    pruned = await audit_backend.prune_old_events(retention_days=audit_retention_days)

    summary = {**result.to_dict(), "orphans_purged": purged, "audit_events_pruned": pruned}
    logger.info("maintenance_complete", **summary)
    return summary


async def run_expiry_sweeper(
    engine: GovernanceEngine,
    audit_backend: AuditBackend,
    hour_utc: int = DEFAULT_SWEEP_HOUR_UTC,
    orphan_grace: timedelta = timedelta(minutes=DEFAULT_ORPHAN_GRACE_MINUTES),
    audit_retention_days: int = DEFAULT_AUDIT_RETENTION_DAYS,
) -> None:
    """Background asyncio task: run maintenance daily at ``hour_utc``:00 UTC.

    Registered with asyncio.create_task() during lifespan startup and
    cancelled on shutdown.

    Retry policy:
      - asyncio.CancelledError → re-raised (expected on shutdown)
      - Any other exception    → log ERROR, run again after 1 hour, then
                                 return to the daily schedule
    """
    retry_pending = False
    while True:
        try:
            if not retry_pending:
                sleep_seconds = seconds_until(hour_utc)
                logger.info(
                    "expiry_sweeper_scheduled",
                    hour_utc=hour_utc,
                    sleep_seconds=sleep_seconds,
                )
                await asyncio.sleep(sleep_seconds)

            retry_pending = False
            await run_maintenance_once(
                engine,
                audit_backend,
                orphan_grace=orphan_grace,
                audit_retention_days=audit_retention_days,
            )

        except asyncio.CancelledError:
            logger.info("expiry_sweeper_cancelled")
            raise

        except Exception as exc:
            logger.error(
                "expiry_sweep_error",
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=SWEEP_RETRY_SECONDS,
            )
            try:
                await asyncio.sleep(SWEEP_RETRY_SECONDS)
            except asyncio.CancelledError:
                logger.info("expiry_sweeper_cancelled_during_retry_sleep")
                raise
            retry_pending = True
