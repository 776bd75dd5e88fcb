"""
Unit tests for the audit runner.

Tests:
- End-to-end crawl of a small site through completion
- Batch splitting and continuation
- Start URL failure
- Cooperative stop during a crawl
- Full and cheap resume of the check phase
"""
import httpx
import pytest
import respx
from sqlalchemy import func, select

from selo.models.audit import (
    AuditStatus,
    CheckPriority,
    CheckStatus,
    CheckType,
    SiteAuditCheck,
    SiteAuditPage,
)
from selo.models.crawl import CrawlQueueEntry
from selo.services.audit_runner import AuditRunner, find_homepage
from selo.services.check_engine import CheckEngine
from selo.services.checks import CheckDefinition, get_check, page_checks
from selo.services.checks.base import passed
from selo.services.crawler import BatchCrawler
from selo.services.fetcher import Fetcher
from tests.fixtures.sample_pages import ABOUT_HTML, CONTACT_HTML, HOME_HTML


def counting_check(name: str, site_wide: bool = False, calls: list | None = None) -> CheckDefinition:
    async def run(context):
        if calls is not None:
            calls.append(context.url)
        return passed()

    return CheckDefinition(
        name=name,
        check_type=CheckType.SEO,
        priority=CheckPriority.RECOMMENDED,
        description=name,
        display_name=name,
        display_name_passed=name,
        run=run,
        is_site_wide=site_wide,
    )


def make_runner(db, engine, fetcher=None, **crawler_options) -> AuditRunner:
    fetcher = fetcher or Fetcher()
    crawler = BatchCrawler(db, fetcher=fetcher, engine=engine, delay_ms=0, **crawler_options)
    return AuditRunner(db, fetcher=fetcher, engine=engine, crawler=crawler)


async def rows(db, model, audit_id) -> list:
    result = await db.execute(select(model).where(model.audit_id == audit_id))
    return list(result.scalars().all())


@pytest.fixture
def example_site():
    """respx routes serving a three page site."""
    with respx.mock(assert_all_called=False) as mock:
        mock.get("https://example.com/").mock(return_value=httpx.Response(200, html=HOME_HTML))
        mock.get("https://example.com/about").mock(return_value=httpx.Response(200, html=ABOUT_HTML))
        mock.get("https://example.com/contact").mock(return_value=httpx.Response(200, html=CONTACT_HTML))
        yield mock


class TestFindHomepage:
    """Test homepage selection."""

    def test_prefers_root(self):
        """The page at / wins over crawl order."""
        pages = [SiteAuditPage(url="https://example.com/about"), SiteAuditPage(url="https://example.com")]
        assert find_homepage(pages).url == "https://example.com"

    def test_falls_back_to_first(self):
        """Without a root page the first page is used."""
        pages = [SiteAuditPage(url="https://example.com/en"), SiteAuditPage(url="https://example.com/fr")]
        assert find_homepage(pages).url == "https://example.com/en"


class TestCrawlToCompletion:
    """Test run_batch through to a completed audit."""

    @pytest.mark.asyncio
    async def test_three_page_site(self, db_session, make_audit, example_site):
        """Three pages are crawled and /contact fails missing_title."""
        audit = await make_audit()
        site_calls = []
        engine = CheckEngine(db_session, checks=page_checks() + [
            counting_check("site_marker", site_wide=True, calls=site_calls),
        ])

        result = await make_runner(db_session, engine).run_batch(audit.id)
        await db_session.refresh(audit)

        assert result["status"] == "completed"
        assert audit.status == AuditStatus.COMPLETED
        assert audit.started_at is not None
        assert audit.completed_at is not None
        assert audit.current_batch == 1
        assert audit.pages_crawled == 3
        assert audit.urls_discovered == 3

        pages = await rows(db_session, SiteAuditPage, audit.id)
        assert sorted(p.url for p in pages) == [
            "https://example.com",
            "https://example.com/about",
            "https://example.com/contact",
        ]

        contact = next(p for p in pages if p.url.endswith("/contact"))
        checks = await rows(db_session, SiteAuditCheck, audit.id)
        contact_title = [c for c in checks if c.page_id == contact.id and c.check_name == "missing_title"]
        assert [c.status for c in contact_title] == [CheckStatus.FAILED]
        assert contact_title[0].fix_guidance == get_check("missing_title").fix_guidance

        # Site-wide checks run once, against the homepage
        assert site_calls == ["https://example.com"]
        assert 0 <= audit.overall_score <= 100
        assert audit.failed_count >= 1

        # The queue is dropped once the audit completes
        assert await rows(db_session, CrawlQueueEntry, audit.id) == []

    @pytest.mark.asyncio
    async def test_dismissed_check_is_skipped(self, db_session, make_audit, example_site, caller):
        """A dismissed (check, url) pair produces no row."""
        from selo.schemas.audit import DismissedCheckCreate
        from selo.services.audit_service import AuditService

        await AuditService(db_session).dismiss_check(
            caller, DismissedCheckCreate(check_name="missing_title", url="https://example.com/contact")
        )
        audit = await make_audit()
        engine = CheckEngine(db_session, checks=[get_check("missing_title")])

        await make_runner(db_session, engine).run_batch(audit.id)

        checks = await rows(db_session, SiteAuditCheck, audit.id)
        assert len(checks) == 2
        assert all(c.status == CheckStatus.PASSED for c in checks)


class TestBatches:
    """Test batch splitting."""

    @pytest.mark.asyncio
    async def test_batch_limit_pauses_between_batches(self, db_session, make_audit, example_site):
        """A batch of two pages leaves the audit batch_complete with work pending."""
        audit = await make_audit()
        engine = CheckEngine(db_session, checks=[get_check("missing_title")])

        result = await make_runner(db_session, engine, batch_size=2).run_batch(audit.id)
        await db_session.refresh(audit)

        assert result == {"status": "batch_complete", "has_more": True, "batch": 1}
        assert audit.status == AuditStatus.BATCH_COMPLETE
        assert audit.completed_at is None
        assert audit.pages_crawled == 2

    @pytest.mark.asyncio
    async def test_page_budget(self, db_session, make_audit, example_site):
        """The page budget ends the crawl even with URLs pending."""
        audit = await make_audit()
        engine = CheckEngine(db_session, checks=[get_check("missing_title")])

        await make_runner(db_session, engine, max_pages=2).run_batch(audit.id)
        await db_session.refresh(audit)

        assert audit.status == AuditStatus.COMPLETED
        assert audit.pages_crawled == 2

    @pytest.mark.asyncio
    async def test_continuation_batch_requires_claim(self, db_session, make_audit):
        """A later batch only runs on an audit claimed back into crawling."""
        audit = await make_audit(status=AuditStatus.BATCH_COMPLETE, current_batch=1)
        engine = CheckEngine(db_session, checks=[])

        result = await make_runner(db_session, engine).run_batch(audit.id)
        await db_session.refresh(audit)

        assert "error" in result
        assert audit.status == AuditStatus.BATCH_COMPLETE
        assert audit.current_batch == 1


class TestStartFailure:
    """Test an unreachable start URL."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreachable_start_url_fails_audit(self, db_session, make_audit):
        """The audit fails with the fetch error."""
        respx.get("https://example.com/").mock(side_effect=httpx.ConnectError("Name or service not known"))
        audit = await make_audit()
        engine = CheckEngine(db_session, checks=page_checks())

        await make_runner(db_session, engine).run_batch(audit.id)
        await db_session.refresh(audit)

        assert audit.status == AuditStatus.FAILED
        assert audit.completed_at is not None
        assert audit.error_message.startswith("Could not fetch https://example.com")


class TestCooperativeStop:
    """Test stopping while a batch is running."""

    @pytest.mark.asyncio
    async def test_stop_during_crawl_keeps_partial_results(self, db_session, make_audit, example_site):
        """A stop seen between pages ends the batch and scores what exists."""
        from selo.services.audit_state import transition

        audit = await make_audit()

        async def stop_after_homepage(context):
            await transition(db_session, audit.id, AuditStatus.STOPPED, [AuditStatus.CRAWLING])
            return passed()

        engine = CheckEngine(db_session, checks=[CheckDefinition(
            name="stop_trigger",
            check_type=CheckType.SEO,
            priority=CheckPriority.CRITICAL,
            description="",
            display_name="Stop",
            display_name_passed="Stop",
            run=stop_after_homepage,
        )])

        result = await make_runner(db_session, engine).run_batch(audit.id)
        await db_session.refresh(audit)

        assert result["stopped"] is True
        assert audit.status == AuditStatus.STOPPED
        assert audit.completed_at is not None
        assert audit.pages_crawled == 1
        assert audit.overall_score == 100
        assert len(await rows(db_session, SiteAuditPage, audit.id)) == 1

    @pytest.mark.asyncio
    async def test_stop_during_check_phase_reports_stopped(self, db_session, make_audit, static_fetcher):
        """A stop that beats completion is what the runner reports."""
        from selo.services.audit_state import transition

        audit = await make_audit(status=AuditStatus.CHECKING, pages_crawled=1)
        db_session.add(SiteAuditPage(audit_id=audit.id, url="https://example.com", status_code=200))
        await db_session.commit()

        async def stop_during_checks(context):
            await transition(db_session, audit.id, AuditStatus.STOPPED, [AuditStatus.CHECKING])
            return passed()

        engine = CheckEngine(db_session, checks=[CheckDefinition(
            name="stop_trigger",
            check_type=CheckType.SEO,
            priority=CheckPriority.CRITICAL,
            description="",
            display_name="Stop",
            display_name_passed="Stop",
            run=stop_during_checks,
            is_site_wide=True,
        )])
        runner = make_runner(db_session, engine, fetcher=static_fetcher({}))

        result = await runner.complete_with_existing_checks(audit.id)
        await db_session.refresh(audit)

        assert result["status"] == "stopped"
        assert audit.status == AuditStatus.STOPPED
        assert audit.passed_count == 1
        assert audit.overall_score == 100


class TestResume:
    """Test resuming the check phase."""

    @pytest.mark.asyncio
    async def test_full_resume_rechecks_existing_pages(self, db_session, make_audit, static_fetcher):
        """Twelve crawled pages and no checks: every page is re-checked, nothing re-crawled."""
        audit = await make_audit(status=AuditStatus.CHECKING, pages_crawled=12)
        urls = ["https://example.com"] + [f"https://example.com/page-{i}" for i in range(1, 12)]
        for url in urls:
            db_session.add(SiteAuditPage(audit_id=audit.id, url=url, status_code=200))
        await db_session.commit()

        page_calls, site_calls = [], []
        engine = CheckEngine(db_session, checks=[
            counting_check("page_marker", calls=page_calls),
            counting_check("site_marker", site_wide=True, calls=site_calls),
        ])
        fetcher = static_fetcher({url: "<html><title>Page</title></html>" for url in urls})

        result = await make_runner(db_session, engine, fetcher=fetcher).resume_audit_checks(audit.id)
        await db_session.refresh(audit)

        assert result["status"] == "completed"
        assert audit.status == AuditStatus.COMPLETED
        assert sorted(page_calls) == sorted(urls)
        assert site_calls == ["https://example.com"]
        assert len(await rows(db_session, SiteAuditPage, audit.id)) == 12
        assert len(await rows(db_session, SiteAuditCheck, audit.id)) == 13
        assert audit.passed_count == 13

    @pytest.mark.asyncio
    async def test_full_resume_skips_resources(self, db_session, make_audit, static_fetcher):
        """Resources and pages that failed to fetch are not re-checked."""
        audit = await make_audit(status=AuditStatus.CHECKING)
        db_session.add_all([
            SiteAuditPage(audit_id=audit.id, url="https://example.com", status_code=200),
            SiteAuditPage(audit_id=audit.id, url="https://example.com/a.pdf", status_code=200,
                          is_resource=True, resource_type="pdf"),
            SiteAuditPage(audit_id=audit.id, url="https://example.com/x", status_code=0, fetch_error="timeout"),
        ])
        await db_session.commit()

        page_calls = []
        engine = CheckEngine(db_session, checks=[counting_check("page_marker", calls=page_calls)])
        fetcher = static_fetcher({})

        await make_runner(db_session, engine, fetcher=fetcher).resume_audit_checks(audit.id)

        assert page_calls == ["https://example.com"]

    @pytest.mark.asyncio
    async def test_cheap_resume_adds_missing_site_wide_checks(self, db_session, make_audit, static_fetcher):
        """Existing page checks are kept; site-wide checks run once."""
        audit = await make_audit(status=AuditStatus.CHECKING)
        page = SiteAuditPage(audit_id=audit.id, url="https://example.com", status_code=200)
        db_session.add(page)
        await db_session.flush()
        db_session.add(SiteAuditCheck(
            audit_id=audit.id,
            page_id=page.id,
            check_type=CheckType.SEO,
            check_name="missing_title",
            priority=CheckPriority.CRITICAL,
            status=CheckStatus.FAILED,
            details={},
        ))
        await db_session.commit()

        site_calls = []
        engine = CheckEngine(db_session, checks=[counting_check("site_marker", site_wide=True, calls=site_calls)])
        runner = make_runner(db_session, engine, fetcher=static_fetcher({}))

        result = await runner.complete_with_existing_checks(audit.id)
        await db_session.refresh(audit)

        assert result["status"] == "completed"
        assert site_calls == ["https://example.com"]
        assert audit.failed_count == 1
        assert audit.passed_count == 1
        # SEO: critical failed (0/3) + recommended passed (2/2) = 40
        assert audit.seo_score == 40

    @pytest.mark.asyncio
    async def test_resume_failure_is_recorded(self, db_session, make_audit, static_fetcher):
        """A resume with nothing to check fails with a prefixed message."""
        audit = await make_audit(status=AuditStatus.CHECKING)
        engine = CheckEngine(db_session, checks=[])

        await make_runner(db_session, engine, fetcher=static_fetcher({})).resume_audit_checks(audit.id)
        await db_session.refresh(audit)

        assert audit.status == AuditStatus.FAILED
        assert audit.error_message == "Failed to resume checks: No pages were crawled"
