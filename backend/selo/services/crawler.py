"""
Selo batch crawler.

Crawls an audit's site in bounded batches driven by a persistent queue:
- Queue ordered by depth, then discovery time (breadth-first)
- One page row per visited URL, including failed fetches
- Page checks run as soon as a page is stored
- Same-site link discovery (www and non-www treated as one site)
- Cooperative stop: the audit status is re-read before every page
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from selo.config import settings
from selo.core.exceptions import CrawlStartError
from selo.models.audit import AuditStatus, SiteAudit, SiteAuditPage
from selo.models.base import utcnow
from selo.models.crawl import CrawlQueueEntry
from selo.services.audit_state import get_status, update_audit
from selo.services.check_engine import CheckEngine, Dismissals
from selo.services.fetcher import Fetcher, FetchResult, extract_links, normalize_url

logger = logging.getLogger(__name__)

RESOURCE_EXTENSIONS = {
    "pdf": (".pdf",),
    "document": (".doc", ".docx", ".odt", ".rtf", ".txt"),
    "spreadsheet": (".xls", ".xlsx", ".csv", ".ods"),
    "presentation": (".ppt", ".pptx", ".odp"),
    "archive": (".zip", ".rar", ".7z", ".tar", ".gz"),
    "image": (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico"),
}


def get_resource_type(url: str) -> str | None:
    """Resource group for non-HTML assets, None for regular pages."""
    path = urlparse(url).path.lower()
    for resource_type, extensions in RESOURCE_EXTENSIONS.items():
        if path.endswith(extensions):
            return resource_type
    return None


def resource_title(url: str) -> str | None:
    filename = urlparse(url).path.rsplit("/", 1)[-1]
    return unquote(filename) if filename else None


def extract_page_metadata(html: str) -> tuple[str | None, str | None]:
    """Title and meta description of an HTML page."""
    soup = BeautifulSoup(html or "", "lxml")

    title = None
    if soup.title:
        title = soup.title.get_text(strip=True) or None

    description = None
    meta = soup.find("meta", attrs={"name": lambda v: v and v.lower() == "description"})
    if meta is not None:
        description = (meta.get("content") or "").strip() or None

    return title, description


def _same_site(url: str, other: str) -> bool:
    def bare(u: str) -> str:
        host = (urlparse(u).hostname or "").lower()
        return host[4:] if host.startswith("www.") else host

    return bare(url) == bare(other)


@dataclass
class BatchResult:
    pages_processed: int
    has_more_pages: bool
    stopped: bool


class BatchCrawler:
    """Processes one batch of an audit's crawl queue."""

    def __init__(
        self,
        db: AsyncSession,
        fetcher: Fetcher | None = None,
        engine: CheckEngine | None = None,
        batch_size: int | None = None,
        max_seconds: float | None = None,
        delay_ms: int | None = None,
        max_pages: int | None = None,
        max_depth: int | None = None,
    ):
        self.db = db
        self.fetcher = fetcher or Fetcher()
        self.engine = engine or CheckEngine(db)
        self.batch_size = batch_size or settings.CRAWL_BATCH_SIZE
        self.max_seconds = max_seconds or settings.CRAWL_BATCH_MAX_SECONDS
        self.delay_ms = settings.CRAWL_DELAY_MS if delay_ms is None else delay_ms
        self.max_pages = max_pages or settings.MAX_PAGES_PER_AUDIT
        self.max_depth = max_depth or settings.MAX_CRAWL_DEPTH

    # =========================================================================
    # Queue
    # =========================================================================

    async def initialize_queue(self, audit: SiteAudit) -> None:
        await self.enqueue(audit.id, [audit.url], depth=0)
        await update_audit(self.db, audit.id, [AuditStatus.CRAWLING], urls_discovered=1)
        await self.db.commit()

    async def enqueue(self, audit_id, urls, depth: int) -> int:
        """Add URLs not yet in the audit's queue. Returns how many were new."""
        normalized = {normalize_url(url) for url in urls}
        if not normalized:
            return 0

        result = await self.db.execute(
            select(CrawlQueueEntry.url).where(
                CrawlQueueEntry.audit_id == audit_id,
                CrawlQueueEntry.url.in_(normalized),
            )
        )
        existing = set(result.scalars().all())

        new_urls = sorted(normalized - existing)
        now = utcnow()
        self.db.add_all([
            CrawlQueueEntry(audit_id=audit_id, url=url, depth=depth, discovered_at=now)
            for url in new_urls
        ])
        await self.db.flush()
        return len(new_urls)

    async def _next_entry(self, audit_id) -> CrawlQueueEntry | None:
        result = await self.db.execute(
            select(CrawlQueueEntry)
            .where(CrawlQueueEntry.audit_id == audit_id, CrawlQueueEntry.crawled_at.is_(None))
            .order_by(CrawlQueueEntry.depth, CrawlQueueEntry.discovered_at, CrawlQueueEntry.url)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def queue_size(self, audit_id) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(CrawlQueueEntry).where(CrawlQueueEntry.audit_id == audit_id)
        )
        return result.scalar() or 0

    async def has_pending(self, audit_id) -> bool:
        result = await self.db.execute(
            select(func.count())
            .select_from(CrawlQueueEntry)
            .where(CrawlQueueEntry.audit_id == audit_id, CrawlQueueEntry.crawled_at.is_(None))
        )
        return (result.scalar() or 0) > 0

    async def _page_count(self, audit_id) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(SiteAuditPage).where(SiteAuditPage.audit_id == audit_id)
        )
        return result.scalar() or 0

    # =========================================================================
    # Batch
    # =========================================================================

    async def crawl_batch(self, audit: SiteAudit, dismissals: Dismissals | None = None) -> BatchResult:
        started = time.monotonic()
        dismissals = dismissals or set()
        force_relaxed_ssl = bool(audit.use_relaxed_ssl)
        pages_crawled = await self._page_count(audit.id)
        processed = 0

        logger.info(f"Audit {audit.id}: batch starting at {pages_crawled} pages")

        while processed < self.batch_size:
            if time.monotonic() - started > self.max_seconds:
                logger.info(f"Audit {audit.id}: time budget exceeded after {processed} pages")
                break

            status = await get_status(self.db, audit.id)
            if status != AuditStatus.CRAWLING:
                logger.info(f"Audit {audit.id}: status is {status.value if status else None}, stopping batch")
                return BatchResult(pages_processed=processed, has_more_pages=False, stopped=True)

            if pages_crawled >= self.max_pages:
                logger.info(f"Audit {audit.id}: page budget of {self.max_pages} reached")
                return BatchResult(pages_processed=processed, has_more_pages=False, stopped=False)

            entry = await self._next_entry(audit.id)
            if entry is None:
                break

            # Claim the entry before fetching so it is never processed twice
            entry.crawled_at = utcnow()
            await self.db.flush()

            fetched = await self.fetcher.fetch(entry.url, force_relaxed_ssl=force_relaxed_ssl)

            if fetched.used_relaxed_ssl and not force_relaxed_ssl:
                logger.info(f"Audit {audit.id}: certificate problems detected, switching to relaxed SSL")
                force_relaxed_ssl = True
                await self.db.execute(
                    update(SiteAudit).where(SiteAudit.id == audit.id).values(use_relaxed_ssl=True)
                )

            if not fetched.ok and entry.depth == 0:
                raise CrawlStartError(entry.url, fetched.error)

            page = await self._store_page(audit, entry, fetched)
            pages_crawled += 1
            processed += 1

            if not await update_audit(self.db, audit.id, [AuditStatus.CRAWLING], pages_crawled=pages_crawled):
                await self.db.commit()
                return BatchResult(pages_processed=processed, has_more_pages=False, stopped=True)

            if fetched.ok and not page.is_resource:
                await self.engine.run_page_checks(audit, page, fetched.html, dismissals)

                if (
                    fetched.status_code == 200
                    and entry.depth < self.max_depth
                    and _same_site(audit.url, fetched.final_url)
                ):
                    links = extract_links(fetched.html, entry.url, fetched.final_url)
                    if await self.enqueue(audit.id, links, depth=entry.depth + 1):
                        await update_audit(
                            self.db,
                            audit.id,
                            [AuditStatus.CRAWLING],
                            urls_discovered=await self.queue_size(audit.id),
                        )

            await self.db.commit()

            if self.delay_ms:
                await asyncio.sleep(self.delay_ms / 1000)

        has_more = pages_crawled < self.max_pages and await self.has_pending(audit.id)
        logger.info(
            f"Audit {audit.id}: batch processed {processed} pages "
            f"({pages_crawled} total, more pending: {has_more})"
        )
        return BatchResult(pages_processed=processed, has_more_pages=has_more, stopped=False)

    async def _store_page(self, audit: SiteAudit, entry: CrawlQueueEntry, fetched: FetchResult) -> SiteAuditPage:
        resource_type = get_resource_type(entry.url)

        if not fetched.ok:
            logger.warning(f"Audit {audit.id}: failed to fetch {entry.url}: {fetched.error}")
            title, description = None, None
        elif resource_type:
            title, description = resource_title(entry.url), None
        else:
            title, description = extract_page_metadata(fetched.html)

        page = SiteAuditPage(
            audit_id=audit.id,
            url=entry.url,
            status_code=fetched.status_code,
            title=title,
            meta_description=description,
            last_modified=fetched.last_modified,
            is_resource=resource_type is not None,
            resource_type=resource_type,
            fetch_error=fetched.error,
            crawled_at=utcnow(),
        )
        self.db.add(page)
        await self.db.flush()
        return page
