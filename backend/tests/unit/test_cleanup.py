"""
Unit tests for audit retention.

Tests:
- Superseding older audits of the same organization or origin
- Periodic retention windows
- Idempotence
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from selo.models.audit import (
    AuditStatus,
    CheckPriority,
    CheckStatus,
    CheckType,
    SiteAudit,
    SiteAuditCheck,
    SiteAuditPage,
)
from selo.models.crawl import CrawlQueueEntry
from selo.services.cleanup import (
    cleanup_crawl_queue,
    cleanup_older_audit_details,
    run_periodic_cleanup,
)
from tests.fixtures.principals import OTHER_ORG_ID


async def populate(db, audit, pages=2):
    """Give an audit some pages, one check per page and a queue entry."""
    for i in range(pages):
        url = f"{audit.url}/p{i}"
        page = SiteAuditPage(audit_id=audit.id, url=url, status_code=200)
        db.add(page)
        await db.flush()
        db.add(SiteAuditCheck(
            audit_id=audit.id,
            page_id=page.id,
            check_type=CheckType.SEO,
            check_name="missing_title",
            priority=CheckPriority.CRITICAL,
            status=CheckStatus.PASSED,
            details={},
        ))
    db.add(CrawlQueueEntry(audit_id=audit.id, url=audit.url, depth=0))
    await db.commit()


async def count(db, model, audit_id) -> int:
    result = await db.execute(select(func.count(model.id)).where(model.audit_id == audit_id))
    return result.scalar()


def days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


class TestSupersede:
    """Test cleanup_older_audit_details."""

    @pytest.mark.asyncio
    async def test_older_org_audits_lose_details(self, db_session, make_audit):
        """Completed and stopped audits of the organization keep scores but lose rows."""
        old = await make_audit(status=AuditStatus.COMPLETED, overall_score=70, created_at=days_ago(7))
        stopped = await make_audit(status=AuditStatus.STOPPED, created_at=days_ago(3))
        failed = await make_audit(status=AuditStatus.FAILED, created_at=days_ago(2))
        other_org = await make_audit(status=AuditStatus.COMPLETED, organization_id=OTHER_ORG_ID, created_at=days_ago(5))
        current = await make_audit(status=AuditStatus.COMPLETED)
        for audit in (old, stopped, failed, other_org, current):
            await populate(db_session, audit)

        result = await cleanup_older_audit_details(db_session, current)
        await db_session.commit()

        assert result.deleted_pages == 4
        assert result.deleted_checks == 4
        assert await count(db_session, SiteAuditPage, old.id) == 0
        assert await count(db_session, SiteAuditPage, stopped.id) == 0
        # Failed audits stay resumable; other organizations and the current audit are untouched
        assert await count(db_session, SiteAuditPage, failed.id) == 2
        assert await count(db_session, SiteAuditPage, other_org.id) == 2
        assert await count(db_session, SiteAuditPage, current.id) == 2

        await db_session.refresh(old)
        assert old.overall_score == 70

    @pytest.mark.asyncio
    async def test_ephemeral_audits_superseded_by_origin(self, db_session, make_audit):
        """Ephemeral audits are grouped by site origin."""
        same_site = await make_audit(
            url="https://example.com/blog", status=AuditStatus.COMPLETED,
            organization_id=None, created_at=days_ago(1),
        )
        other_site = await make_audit(
            url="https://another.org", status=AuditStatus.COMPLETED,
            organization_id=None, created_at=days_ago(1),
        )
        current = await make_audit(status=AuditStatus.COMPLETED, organization_id=None)
        for audit in (same_site, other_site, current):
            await populate(db_session, audit)

        await cleanup_older_audit_details(db_session, current)
        await db_session.commit()

        assert await count(db_session, SiteAuditPage, same_site.id) == 0
        assert await count(db_session, SiteAuditPage, other_site.id) == 2

    @pytest.mark.asyncio
    async def test_crawl_queue(self, db_session, make_audit):
        """The finished audit's queue is dropped."""
        audit = await make_audit(status=AuditStatus.COMPLETED)
        await populate(db_session, audit)

        assert await cleanup_crawl_queue(db_session, audit.id) == 1
        assert await count(db_session, CrawlQueueEntry, audit.id) == 0


class TestPeriodicCleanup:
    """Test run_periodic_cleanup."""

    @pytest.mark.asyncio
    async def test_retention_windows(self, db_session, make_audit):
        """Old details, old ephemeral audits and finished queues are removed."""
        ancient = await make_audit(status=AuditStatus.COMPLETED, completed_at=days_ago(200))
        recent = await make_audit(status=AuditStatus.COMPLETED, completed_at=days_ago(10))
        old_ephemeral = await make_audit(
            status=AuditStatus.FAILED, organization_id=None, completed_at=days_ago(40),
        )
        new_ephemeral = await make_audit(
            status=AuditStatus.COMPLETED, organization_id=None, completed_at=days_ago(5),
        )
        running = await make_audit(status=AuditStatus.CRAWLING)
        for audit in (ancient, recent, old_ephemeral, new_ephemeral, running):
            await populate(db_session, audit)

        result = await run_periodic_cleanup(db_session)
        await db_session.commit()

        assert result.deleted_audits == 1
        assert await db_session.get(SiteAudit, old_ephemeral.id, populate_existing=True) is None
        assert await count(db_session, SiteAuditPage, old_ephemeral.id) == 0

        assert await count(db_session, SiteAuditPage, ancient.id) == 0
        assert await db_session.get(SiteAudit, ancient.id) is not None

        assert await count(db_session, SiteAuditPage, recent.id) == 2
        assert await count(db_session, SiteAuditPage, new_ephemeral.id) == 2

        # Finished audits lose their queue; a running crawl keeps it
        assert await count(db_session, CrawlQueueEntry, recent.id) == 0
        assert await count(db_session, CrawlQueueEntry, running.id) == 1

    @pytest.mark.asyncio
    async def test_second_run_deletes_nothing(self, db_session, make_audit):
        """Cleanup is idempotent."""
        await make_audit(status=AuditStatus.COMPLETED, completed_at=days_ago(200))
        ephemeral = await make_audit(status=AuditStatus.STOPPED, organization_id=None, completed_at=days_ago(60))
        await populate(db_session, ephemeral)

        first = await run_periodic_cleanup(db_session)
        await db_session.commit()
        second = await run_periodic_cleanup(db_session)
        await db_session.commit()

        assert first.deleted_audits == 1
        assert second.to_dict() == {
            "deleted_checks": 0,
            "deleted_pages": 0,
            "deleted_audits": 0,
            "deleted_queue_entries": 0,
        }
