"""
Retention and cleanup for audit data.

- Superseded audits keep their row (score history) but lose pages and checks
- Ephemeral audits are removed entirely after EPHEMERAL_AUDIT_RETENTION_DAYS
- Crawl queue rows are dropped when a crawl finishes or is abandoned

Every operation deletes by predicate, so running it again deletes nothing.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import timedelta
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from selo.config import settings
from selo.models.audit import AuditStatus, SiteAudit, SiteAuditCheck, SiteAuditPage
from selo.models.base import utcnow
from selo.models.crawl import CrawlQueueEntry
from selo.services.audit_state import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

SUPERSEDABLE_STATUSES = (AuditStatus.COMPLETED, AuditStatus.STOPPED)
# Bulk deletes leave the session identity map untouched
NO_SYNC = {"synchronize_session": False}


@dataclass
class CleanupResult:
    deleted_checks: int = 0
    deleted_pages: int = 0
    deleted_audits: int = 0
    deleted_queue_entries: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _origin(url: str) -> str | None:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}".lower()


async def _delete_details(db: AsyncSession, audit_ids: list[UUID]) -> tuple[int, int, int]:
    """Delete checks, pages and queue entries of the given audits."""
    if not audit_ids:
        return 0, 0, 0

    checks = await db.execute(
        delete(SiteAuditCheck).where(SiteAuditCheck.audit_id.in_(audit_ids)), execution_options=NO_SYNC
    )
    pages = await db.execute(
        delete(SiteAuditPage).where(SiteAuditPage.audit_id.in_(audit_ids)), execution_options=NO_SYNC
    )
    queue = await db.execute(
        delete(CrawlQueueEntry).where(CrawlQueueEntry.audit_id.in_(audit_ids)), execution_options=NO_SYNC
    )
    return checks.rowcount, pages.rowcount, queue.rowcount


async def cleanup_older_audit_details(db: AsyncSession, audit: SiteAudit) -> CleanupResult:
    """Strip pages and checks from audits superseded by `audit`.

    Organization audits are superseded per organization, ephemeral audits per
    site origin.
    """
    query = select(SiteAudit.id, SiteAudit.url).where(
        SiteAudit.id != audit.id,
        SiteAudit.status.in_(SUPERSEDABLE_STATUSES),
        SiteAudit.created_at <= audit.created_at,
    )

    if audit.organization_id is not None:
        query = query.where(SiteAudit.organization_id == audit.organization_id)
        rows = (await db.execute(query)).all()
        older_ids = [row.id for row in rows]
    else:
        origin = _origin(audit.url)
        query = query.where(SiteAudit.organization_id.is_(None))
        rows = (await db.execute(query)).all()
        older_ids = [row.id for row in rows if origin and _origin(row.url) == origin]

    if not older_ids:
        return CleanupResult()

    checks, pages, queue = await _delete_details(db, older_ids)
    scope = f"org {audit.organization_id}" if audit.organization_id else f"URL {audit.url}"
    logger.info(
        f"Cleaned up {len(older_ids)} older audits for {scope}: "
        f"{checks} checks, {pages} pages"
    )
    return CleanupResult(deleted_checks=checks, deleted_pages=pages, deleted_queue_entries=queue)


async def cleanup_crawl_queue(db: AsyncSession, audit_id: UUID) -> int:
    result = await db.execute(
        delete(CrawlQueueEntry).where(CrawlQueueEntry.audit_id == audit_id), execution_options=NO_SYNC
    )
    if result.rowcount:
        logger.info(f"Deleted {result.rowcount} crawl queue entries for audit {audit_id}")
    return result.rowcount


async def run_periodic_cleanup(db: AsyncSession) -> CleanupResult:
    now = utcnow()
    detail_cutoff = now - timedelta(days=settings.AUDIT_DETAIL_RETENTION_DAYS)
    ephemeral_cutoff = now - timedelta(days=settings.EPHEMERAL_AUDIT_RETENTION_DAYS)
    queue_cutoff = now - timedelta(days=settings.CRAWL_QUEUE_RETENTION_DAYS)
    result = CleanupResult()

    logger.info("Starting periodic audit cleanup")

    # 1. Old audits keep their scores but lose the detail rows
    old_ids = (await db.execute(
        select(SiteAudit.id).where(
            SiteAudit.completed_at < detail_cutoff,
            SiteAudit.status.in_(SUPERSEDABLE_STATUSES),
        )
    )).scalars().all()
    checks, pages, queue = await _delete_details(db, list(old_ids))
    result.deleted_checks += checks
    result.deleted_pages += pages
    result.deleted_queue_entries += queue

    # 2. Ephemeral audits go entirely
    ephemeral_ids = list((await db.execute(
        select(SiteAudit.id).where(
            SiteAudit.organization_id.is_(None),
            SiteAudit.completed_at < ephemeral_cutoff,
            SiteAudit.status.in_(TERMINAL_STATUSES),
        )
    )).scalars().all())
    if ephemeral_ids:
        checks, pages, queue = await _delete_details(db, ephemeral_ids)
        result.deleted_checks += checks
        result.deleted_pages += pages
        result.deleted_queue_entries += queue
        audits = await db.execute(
            delete(SiteAudit).where(SiteAudit.id.in_(ephemeral_ids)), execution_options=NO_SYNC
        )
        result.deleted_audits = audits.rowcount

    # 3. Queue rows left behind by crawls that never finished
    finished_ids = select(SiteAudit.id).where(SiteAudit.status.in_(TERMINAL_STATUSES))
    orphaned = await db.execute(
        delete(CrawlQueueEntry).where(
            (CrawlQueueEntry.discovered_at < queue_cutoff)
            | CrawlQueueEntry.audit_id.in_(finished_ids)
        ),
        execution_options=NO_SYNC,
    )
    result.deleted_queue_entries += orphaned.rowcount

    await db.flush()
    logger.info(
        f"Periodic cleanup complete: {result.deleted_checks} checks, {result.deleted_pages} pages, "
        f"{result.deleted_audits} ephemeral audits, {result.deleted_queue_entries} queue entries"
    )
    return result
