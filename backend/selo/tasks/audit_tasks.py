"""
Audit Tasks

Background tasks for the site audit pipeline. Each task is a thin sync
wrapper that drives the async implementation on a fresh event loop.
"""

import asyncio
import logging
from uuid import UUID

from celery import shared_task

from selo.core.exceptions import ConflictError, NotFoundError
from selo.database import task_session
from selo.services.audit_runner import AuditRunner
from selo.services.audit_service import AuditService
from selo.services.cleanup import run_periodic_cleanup

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async code in sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# === Crawl ===


@shared_task(bind=True)
def run_audit_batch(self, audit_id: str):
    """Crawl one batch of an audit and schedule the next one if pages remain."""
    result = run_async(_run_audit_batch(audit_id))
    if result.get("has_more"):
        continue_audit.delay(audit_id)
    return result


async def _run_audit_batch(audit_id: str) -> dict:
    async with task_session() as session:
        runner = AuditRunner(session)
        return await runner.run_batch(UUID(audit_id))


@shared_task(bind=True)
def continue_audit(self, audit_id: str):
    """Claim a batch_complete audit and crawl its next batch."""
    result = run_async(_continue_audit(audit_id))
    if result.get("has_more"):
        continue_audit.delay(audit_id)
    return result


async def _continue_audit(audit_id: str) -> dict:
    async with task_session() as session:
        service = AuditService(session)
        try:
            batch = await service.claim_continuation(UUID(audit_id))
        except (ConflictError, NotFoundError) as e:
            # Claimed elsewhere or stopped
            logger.info(f"Audit {audit_id} not continued: {e.detail}")
            await session.rollback()
            return {"skipped": True}
        await session.commit()

        logger.info(f"Continuing audit {audit_id} with batch {batch}")
        runner = AuditRunner(session)
        return await runner.run_batch(UUID(audit_id))


# === Resume ===


@shared_task(bind=True)
def resume_audit_checks(self, audit_id: str):
    """Re-run every check against an audit's existing pages."""
    return run_async(_resume_audit_checks(audit_id))


async def _resume_audit_checks(audit_id: str) -> dict:
    async with task_session() as session:
        runner = AuditRunner(session)
        return await runner.resume_audit_checks(UUID(audit_id))


@shared_task(bind=True)
def complete_audit_checks(self, audit_id: str):
    """Finish an audit whose page checks already exist."""
    return run_async(_complete_audit_checks(audit_id))


async def _complete_audit_checks(audit_id: str) -> dict:
    async with task_session() as session:
        runner = AuditRunner(session)
        return await runner.complete_with_existing_checks(UUID(audit_id))


# === Periodic ===


@shared_task(bind=True)
def check_stale_audits(self):
    """Fail audits whose worker disappeared."""
    return run_async(_check_stale_audits())


async def _check_stale_audits() -> dict:
    async with task_session() as session:
        failed = await AuditService(session).sweep_stale_audits()
        await session.commit()
        return {"failed": failed}


@shared_task(bind=True)
def cleanup_audits(self):
    """Apply the audit retention policy."""
    return run_async(_cleanup_audits())


async def _cleanup_audits() -> dict:
    async with task_session() as session:
        result = await run_periodic_cleanup(session)
        await session.commit()
        return result.to_dict()
