"""
Audit lifecycle state machine.

The audit row is the only coordination point between the API, the worker
and the periodic sweeps. Every status change is a conditional UPDATE keyed
on the status the caller expects, so a worker that lost its audit to a stop
request or a stale-job sweep finds zero affected rows and backs off instead
of overwriting.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from selo.models.audit import AuditStatus, SiteAudit
from selo.models.base import as_aware, utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({
    AuditStatus.PENDING,
    AuditStatus.CRAWLING,
    AuditStatus.BATCH_COMPLETE,
    AuditStatus.CHECKING,
})

TERMINAL_STATUSES = frozenset({
    AuditStatus.COMPLETED,
    AuditStatus.FAILED,
    AuditStatus.STOPPED,
})

RESUMABLE_STATUSES = frozenset({AuditStatus.FAILED, AuditStatus.STOPPED})

ALLOWED_TRANSITIONS: dict[AuditStatus, frozenset[AuditStatus]] = {
    AuditStatus.PENDING: frozenset({AuditStatus.CRAWLING, AuditStatus.FAILED, AuditStatus.STOPPED}),
    AuditStatus.CRAWLING: frozenset({
        AuditStatus.BATCH_COMPLETE,
        AuditStatus.CHECKING,
        AuditStatus.FAILED,
        AuditStatus.STOPPED,
    }),
    AuditStatus.BATCH_COMPLETE: frozenset({AuditStatus.CRAWLING, AuditStatus.FAILED, AuditStatus.STOPPED}),
    AuditStatus.CHECKING: frozenset({AuditStatus.COMPLETED, AuditStatus.FAILED, AuditStatus.STOPPED}),
    AuditStatus.COMPLETED: frozenset(),
    # Resume re-enters the check phase
    AuditStatus.FAILED: frozenset({AuditStatus.CHECKING}),
    AuditStatus.STOPPED: frozenset({AuditStatus.CHECKING}),
}


class InvalidTransitionError(ValueError):
    pass


def can_transition(source: AuditStatus, target: AuditStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[source]


def staleness(audit: SiteAudit, now: datetime | None = None) -> timedelta:
    """Time since the audit last showed signs of life."""
    now = now or utcnow()
    heartbeat = as_aware(audit.updated_at) or as_aware(audit.created_at) or now
    return now - heartbeat


async def update_audit(
    db: AsyncSession,
    audit_id: UUID,
    expected: Iterable[AuditStatus],
    **values,
) -> bool:
    """Write fields on the audit only while it is in one of the expected statuses.

    Always touches updated_at. Returns False when the guard did not match.
    """
    expected = list(expected)
    values.setdefault("updated_at", utcnow())

    result = await db.execute(
        update(SiteAudit)
        .where(SiteAudit.id == audit_id, SiteAudit.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount > 0


async def transition(
    db: AsyncSession,
    audit_id: UUID,
    target: AuditStatus,
    expected: Iterable[AuditStatus],
    **values,
) -> bool:
    """Move the audit to `target` if it is currently in one of `expected`.

    Terminal targets stamp completed_at; re-entering an active state clears it.
    """
    expected = list(expected)
    for source in expected:
        if not can_transition(source, target):
            raise InvalidTransitionError(f"{source.value} -> {target.value} is not allowed")

    now = utcnow()
    values["status"] = target
    values.setdefault("updated_at", now)
    if target in TERMINAL_STATUSES:
        values.setdefault("completed_at", now)
    else:
        values.setdefault("completed_at", None)

    changed = await update_audit(db, audit_id, expected, **values)
    if changed:
        logger.info(f"Audit {audit_id} -> {target.value}")
    else:
        logger.warning(
            f"Audit {audit_id} was not in {[s.value for s in expected]}; "
            f"skipped transition to {target.value}"
        )
    return changed


async def fail_audit(
    db: AsyncSession,
    audit_id: UUID,
    error_message: str,
    expected: Iterable[AuditStatus] = ACTIVE_STATUSES,
) -> bool:
    return await transition(
        db,
        audit_id,
        AuditStatus.FAILED,
        expected,
        error_message=error_message,
    )


async def get_status(db: AsyncSession, audit_id: UUID) -> AuditStatus | None:
    """Read the persisted status, bypassing whatever the session has cached."""
    result = await db.execute(select(SiteAudit.status).where(SiteAudit.id == audit_id))
    return result.scalar_one_or_none()
