"""
Check engine.

Runs registered check definitions against a page (page-scoped) or against
the homepage plus the full page list (site-wide) and persists one
SiteAuditCheck row per definition. A definition that raises is recorded as
a failed verdict; it never aborts the rest of the run.
"""

import asyncio
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from selo.config import settings
from selo.models.audit import CheckStatus, DismissedCheck, SiteAudit, SiteAuditCheck, SiteAuditPage
from selo.services.checks import (
    CheckContext,
    CheckDefinition,
    CheckResult,
    PageSummary,
    all_checks,
)

logger = logging.getLogger(__name__)

Dismissals = set[tuple[str, str]]


async def run_check(definition: CheckDefinition, context: CheckContext) -> CheckResult:
    """Run one definition, converting any exception into a failed verdict."""
    try:
        result = await definition.run(context)
    except Exception as e:
        logger.warning(f"Check {definition.name} raised on {context.url}: {e}")
        error = str(e) or type(e).__name__
        return CheckResult(
            status=CheckStatus.FAILED,
            details={"message": f"Check could not be completed: {error}", "error": error},
        )
    return result


class CheckEngine:
    """Persisting front-end over the check registry for one session."""

    def __init__(
        self,
        db: AsyncSession,
        checks: list[CheckDefinition] | None = None,
        concurrency: int | None = None,
    ):
        self.db = db
        self.checks = checks if checks is not None else all_checks()
        self.concurrency = concurrency or settings.CHECK_CONCURRENCY

    @property
    def page_checks(self) -> list[CheckDefinition]:
        return [c for c in self.checks if not c.is_site_wide]

    @property
    def site_wide_checks(self) -> list[CheckDefinition]:
        return [c for c in self.checks if c.is_site_wide]

    async def load_dismissals(self, audit: SiteAudit) -> Dismissals:
        """(check_name, url) pairs the audit's organization has dismissed."""
        if audit.organization_id is None:
            return set()
        result = await self.db.execute(
            select(DismissedCheck.check_name, DismissedCheck.url).where(
                DismissedCheck.organization_id == audit.organization_id
            )
        )
        return {(row.check_name, row.url) for row in result}

    async def _run_all(
        self,
        definitions: list[CheckDefinition],
        context: CheckContext,
    ) -> list[tuple[CheckDefinition, CheckResult]]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(definition: CheckDefinition) -> tuple[CheckDefinition, CheckResult]:
            async with semaphore:
                return definition, await run_check(definition, context)

        return list(await asyncio.gather(*(guarded(d) for d in definitions)))

    def _to_row(
        self,
        audit_id: UUID,
        page_id: UUID | None,
        definition: CheckDefinition,
        result: CheckResult,
    ) -> SiteAuditCheck:
        details = result.details or {}
        return SiteAuditCheck(
            audit_id=audit_id,
            page_id=page_id,
            check_type=definition.check_type,
            check_name=definition.name,
            priority=definition.priority,
            status=result.status,
            details=details,
            display_name=definition.display_name,
            display_name_passed=definition.display_name_passed,
            learn_more_url=definition.learn_more_url,
            is_site_wide=definition.is_site_wide,
            description=definition.description,
            fix_guidance=definition.fix_guidance or details.get("message"),
        )

    async def run_page_checks(
        self,
        audit: SiteAudit,
        page: SiteAuditPage,
        html: str,
        dismissals: Dismissals | None = None,
    ) -> list[SiteAuditCheck]:
        dismissals = dismissals or set()
        definitions = [d for d in self.page_checks if (d.name, page.url) not in dismissals]
        context = CheckContext(
            url=page.url,
            html=html,
            title=page.title,
            status_code=page.status_code or 0,
        )

        rows = [
            self._to_row(audit.id, page.id, definition, result)
            for definition, result in await self._run_all(definitions, context)
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    async def run_site_wide_checks(
        self,
        audit: SiteAudit,
        homepage_url: str,
        html: str,
        pages: list[SiteAuditPage],
        dismissals: Dismissals | None = None,
    ) -> list[SiteAuditCheck]:
        dismissals = dismissals or set()
        summaries = [PageSummary.from_page(page) for page in pages]
        homepage = next((p for p in summaries if p.url == homepage_url), None)
        context = CheckContext(
            url=homepage_url,
            html=html,
            title=homepage.title if homepage else None,
            status_code=(homepage.status_code or 0) if homepage else 200,
            all_pages=summaries,
        )
        # Site-wide dismissals are keyed on the site origin
        definitions = [
            d for d in self.site_wide_checks if (d.name, context.origin) not in dismissals
        ]

        rows = [
            self._to_row(audit.id, None, definition, result)
            for definition, result in await self._run_all(definitions, context)
        ]
        self.db.add_all(rows)
        await self.db.flush()
        logger.info(f"Audit {audit.id}: {len(rows)} site-wide checks recorded")
        return rows
