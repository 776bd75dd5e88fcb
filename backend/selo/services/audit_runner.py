"""
Audit Runner

Drives one audit through the pipeline: crawl batches, site-wide checks,
scoring, completion. Also implements the two resume paths and finalization
of stopped audits. All state lives in the database; the runner re-reads the
audit status before each unit of work and gives up quietly when another
actor (stop request, stale-job sweep) has taken the audit over.
"""

import logging
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from selo.config import settings
from selo.models.audit import AuditStatus, SiteAudit, SiteAuditCheck, SiteAuditPage
from selo.models.base import utcnow
from selo.services.audit_state import (
    fail_audit,
    get_status,
    transition,
    update_audit,
)
from selo.services.check_engine import CheckEngine, Dismissals
from selo.services.cleanup import cleanup_crawl_queue, cleanup_older_audit_details
from selo.services.crawler import BatchCrawler
from selo.services.fetcher import Fetcher
from selo.services.scoring import AuditScores, calculate_scores
from selo.services.summary import generate_executive_summary

logger = logging.getLogger(__name__)

Summarizer = Callable[[str, int, AuditScores, list[SiteAuditCheck]], Awaitable[str | None]]

NO_PAGES_MESSAGE = "No pages were crawled"


async def score_stopped_audit(db: AsyncSession, audit_id: UUID) -> AuditScores:
    """Score whatever checks a stopped audit produced and drop its queue. Status stays stopped."""
    result = await db.execute(select(SiteAuditCheck).where(SiteAuditCheck.audit_id == audit_id))
    scores = calculate_scores(result.scalars().all())
    await update_audit(db, audit_id, [AuditStatus.STOPPED], **scores.to_dict())
    await cleanup_crawl_queue(db, audit_id)
    logger.info(f"Audit {audit_id} stopped with partial results (overall {scores.overall_score})")
    return scores


def find_homepage(pages: list[SiteAuditPage]) -> SiteAuditPage | None:
    """The page at the site root, else the first page crawled."""
    for page in pages:
        if urlparse(page.url).path in ("", "/"):
            return page
    return pages[0] if pages else None


class AuditRunner:
    """Runs pipeline stages for audits using one database session."""

    def __init__(
        self,
        db: AsyncSession,
        fetcher: Fetcher | None = None,
        engine: CheckEngine | None = None,
        crawler: BatchCrawler | None = None,
        summarize: Summarizer | None = None,
    ):
        self.db = db
        self.fetcher = fetcher or Fetcher()
        self.engine = engine or CheckEngine(db)
        self.crawler = crawler or BatchCrawler(db, fetcher=self.fetcher, engine=self.engine)
        self.summarize = summarize or generate_executive_summary

    # =========================================================================
    # Loading
    # =========================================================================

    async def _load(self, audit_id: UUID) -> SiteAudit | None:
        return await self.db.get(SiteAudit, audit_id, populate_existing=True)

    async def _pages(self, audit_id: UUID) -> list[SiteAuditPage]:
        result = await self.db.execute(
            select(SiteAuditPage)
            .where(SiteAuditPage.audit_id == audit_id)
            .order_by(SiteAuditPage.crawled_at, SiteAuditPage.id)
        )
        return list(result.scalars().all())

    async def _checks(self, audit_id: UUID) -> list[SiteAuditCheck]:
        result = await self.db.execute(
            select(SiteAuditCheck).where(SiteAuditCheck.audit_id == audit_id)
        )
        return list(result.scalars().all())

    async def _has_site_wide_checks(self, audit_id: UUID) -> bool:
        result = await self.db.execute(
            select(func.count())
            .select_from(SiteAuditCheck)
            .where(SiteAuditCheck.audit_id == audit_id, SiteAuditCheck.is_site_wide.is_(True))
        )
        return (result.scalar() or 0) > 0

    # =========================================================================
    # Crawl
    # =========================================================================

    async def run_batch(self, audit_id: UUID) -> dict:
        """Crawl one batch. The first batch claims a pending audit."""
        audit = await self._load(audit_id)
        if audit is None:
            return {"error": "Audit not found"}

        try:
            if audit.current_batch == 0:
                claimed = await transition(
                    self.db,
                    audit_id,
                    AuditStatus.CRAWLING,
                    [AuditStatus.PENDING],
                    started_at=utcnow(),
                    current_batch=1,
                )
                if not claimed:
                    return {"error": "Audit is not pending"}
                await self.db.commit()
                audit = await self._load(audit_id)
                await self.crawler.initialize_queue(audit)
            else:
                claimed = await update_audit(
                    self.db,
                    audit_id,
                    [AuditStatus.CRAWLING],
                    current_batch=audit.current_batch + 1,
                )
                if not claimed:
                    return {"error": "Audit is not crawling"}
                await self.db.commit()

            audit = await self._load(audit_id)
            logger.info(f"Audit {audit_id}: starting batch {audit.current_batch}")

            dismissals = await self.engine.load_dismissals(audit)
            result = await self.crawler.crawl_batch(audit, dismissals)

            if result.stopped:
                status = await get_status(self.db, audit_id)
                if status == AuditStatus.STOPPED:
                    await self.finalize_stopped(audit)
                return {"status": status.value if status else None, "stopped": True}

            if result.has_more_pages:
                await transition(self.db, audit_id, AuditStatus.BATCH_COMPLETE, [AuditStatus.CRAWLING])
                await self.db.commit()
                return {
                    "status": AuditStatus.BATCH_COMPLETE.value,
                    "has_more": True,
                    "batch": audit.current_batch,
                }

            return await self.finish_audit(audit, dismissals)

        except Exception as e:
            logger.exception(f"Audit {audit_id} failed")
            await self.db.rollback()
            await fail_audit(self.db, audit_id, str(e) or type(e).__name__)
            await self.db.commit()
            return {"error": str(e)}

    # =========================================================================
    # Check phase
    # =========================================================================

    async def _run_site_wide(
        self,
        audit: SiteAudit,
        pages: list[SiteAuditPage],
        dismissals: Dismissals,
    ) -> list[SiteAuditCheck]:
        homepage = find_homepage(pages)
        fetched = await self.fetcher.fetch(homepage.url, force_relaxed_ssl=bool(audit.use_relaxed_ssl))
        html = fetched.html if fetched.ok else ""
        return await self.engine.run_site_wide_checks(audit, homepage.url, html, pages, dismissals)

    async def finish_audit(self, audit: SiteAudit, dismissals: Dismissals | None = None) -> dict:
        """Crawl is done: run site-wide checks, score and complete."""
        pages = await self._pages(audit.id)

        moved = await transition(
            self.db,
            audit.id,
            AuditStatus.CHECKING,
            [AuditStatus.CRAWLING],
            pages_crawled=len(pages),
        )
        await self.db.commit()
        if not moved:
            return await self._abandon(audit)

        if not pages:
            await fail_audit(self.db, audit.id, NO_PAGES_MESSAGE, [AuditStatus.CHECKING])
            await self.db.commit()
            return {"error": NO_PAGES_MESSAGE}

        if dismissals is None:
            dismissals = await self.engine.load_dismissals(audit)

        await self._run_site_wide(audit, pages, dismissals)
        await self.db.commit()

        scores = await self._score_and_complete(audit)

        await cleanup_crawl_queue(self.db, audit.id)
        await cleanup_older_audit_details(self.db, audit)
        await self.db.commit()

        return await self._outcome(audit.id, scores)

    async def _score_and_complete(self, audit: SiteAudit) -> AuditScores:
        checks = await self._checks(audit.id)
        scores = calculate_scores(checks)

        summary = None
        if settings.EXECUTIVE_SUMMARY_ENABLED:
            summary = await self.summarize(audit.url, audit.pages_crawled, scores, checks)

        completed = await transition(
            self.db,
            audit.id,
            AuditStatus.COMPLETED,
            [AuditStatus.CHECKING],
            executive_summary=summary,
            error_message=None,
            **scores.to_dict(),
        )
        if not completed and await get_status(self.db, audit.id) == AuditStatus.STOPPED:
            await self.finalize_stopped(audit)
        await self.db.commit()

        if completed:
            logger.info(
                f"Audit {audit.id} completed: overall {scores.overall_score}, "
                f"{scores.failed_count} failed, {scores.warning_count} warnings"
            )
        return scores

    async def _outcome(self, audit_id: UUID, scores: AuditScores) -> dict:
        # A stop can win the race against completion
        status = await get_status(self.db, audit_id)
        return {"status": status.value if status else None, "scores": scores.to_dict()}

    async def finalize_stopped(self, audit: SiteAudit) -> AuditScores:
        scores = await score_stopped_audit(self.db, audit.id)
        await self.db.commit()
        return scores

    # =========================================================================
    # Resume
    # =========================================================================

    async def resume_audit_checks(self, audit_id: UUID) -> dict:
        """Full resume: re-run every check against the pages already crawled."""
        try:
            audit = await self._load(audit_id)
            if audit is None:
                return {"error": "Audit not found"}

            pages = await self._pages(audit_id)
            if not pages:
                raise ValueError(NO_PAGES_MESSAGE)

            dismissals = await self.engine.load_dismissals(audit)

            await self._run_site_wide(audit, pages, dismissals)
            await self.db.commit()

            for page in pages:
                if page.is_resource or page.fetch_error:
                    continue

                if await get_status(self.db, audit_id) != AuditStatus.CHECKING:
                    return await self._abandon(audit)

                fetched = await self.fetcher.fetch(page.url, force_relaxed_ssl=bool(audit.use_relaxed_ssl))
                if not fetched.ok:
                    logger.warning(f"Audit {audit_id}: could not re-fetch {page.url}: {fetched.error}")
                    continue

                await self.engine.run_page_checks(audit, page, fetched.html, dismissals)
                await update_audit(self.db, audit_id, [AuditStatus.CHECKING])
                await self.db.commit()

            scores = await self._score_and_complete(audit)
            return await self._outcome(audit.id, scores)

        except Exception as e:
            logger.exception(f"Resuming checks for audit {audit_id} failed")
            await self.db.rollback()
            await fail_audit(
                self.db,
                audit_id,
                f"Failed to resume checks: {e}",
                [AuditStatus.CHECKING],
            )
            await self.db.commit()
            return {"error": str(e)}

    async def complete_with_existing_checks(self, audit_id: UUID) -> dict:
        """Cheap resume: page checks already exist, only site-wide checks and scoring remain."""
        try:
            audit = await self._load(audit_id)
            if audit is None:
                return {"error": "Audit not found"}

            if not await self._has_site_wide_checks(audit_id):
                pages = await self._pages(audit_id)
                if not pages:
                    raise ValueError(NO_PAGES_MESSAGE)
                dismissals = await self.engine.load_dismissals(audit)
                await self._run_site_wide(audit, pages, dismissals)
                await self.db.commit()

            scores = await self._score_and_complete(audit)
            return await self._outcome(audit.id, scores)

        except Exception as e:
            logger.exception(f"Completing audit {audit_id} failed")
            await self.db.rollback()
            await fail_audit(
                self.db,
                audit_id,
                f"Failed to complete audit: {e}",
                [AuditStatus.CHECKING],
            )
            await self.db.commit()
            return {"error": str(e)}

    async def _abandon(self, audit: SiteAudit) -> dict:
        status = await get_status(self.db, audit.id)
        if status == AuditStatus.STOPPED:
            await self.finalize_stopped(audit)
        return {"status": status.value if status else None, "stopped": True}
