"""
Site audit service: intake, access control, stop/resume, continuation
claims and check dismissals. Pipeline execution itself lives in the
audit runner and the Celery tasks.
"""
import logging
from datetime import timedelta
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from selo.config import settings
from selo.core.deps import Caller
from selo.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from selo.models.audit import (
    AuditStatus,
    DismissedCheck,
    SiteAudit,
    SiteAuditCheck,
    SiteAuditPage,
)
from selo.models.base import utcnow
from selo.schemas.audit import AuditCreate, DismissedCheckCreate
from selo.services.audit_runner import score_stopped_audit
from selo.services.audit_state import (
    ACTIVE_STATUSES,
    RESUMABLE_STATUSES,
    fail_audit,
    staleness,
    transition,
)
from selo.services.fetcher import normalize_url

logger = logging.getLogger(__name__)

STOPPED_UNRESPONSIVE_MESSAGE = (
    "Audit was stopped - the runner was not responding and the crawl did not complete."
)
TIMED_OUT_MESSAGE = "Audit timed out - the worker was terminated before completion. Please try again."

# Resume modes
RESUME_FULL = "full"
RESUME_COMPLETE = "complete"


def validate_audit_url(url: str) -> str:
    """Normalize a user-supplied URL; bare hostnames get https://."""
    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"

    parsed = urlparse(url)
    host = parsed.hostname
    if parsed.scheme not in ("http", "https") or not host or any(c.isspace() for c in url):
        raise BadRequestError("Invalid URL")

    return normalize_url(url)


class AuditService:
    """Service for site audit operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Intake and lookup
    # =========================================================================

    async def create_audit(self, caller: Caller, data: AuditCreate) -> SiteAudit:
        """Create a pending audit. Callers without an organization get an ephemeral one."""
        url = validate_audit_url(data.url)
        organization_id = None if data.one_time else caller.organization_id

        audit = SiteAudit(
            organization_id=organization_id,
            created_by=caller.user_id,
            url=url,
            status=AuditStatus.PENDING,
        )
        self.db.add(audit)
        await self.db.flush()
        await self.db.refresh(audit)

        kind = "ephemeral" if organization_id is None else f"org {organization_id}"
        logger.info(f"Created {kind} audit {audit.id} for {url}")
        return audit

    async def get_by_id(self, audit_id: UUID) -> SiteAudit | None:
        return await self.db.get(SiteAudit, audit_id, populate_existing=True)

    def _check_access(self, audit: SiteAudit, caller: Caller | None) -> None:
        # The scheduler (caller None) sees everything
        if caller is None:
            return
        if audit.organization_id is not None:
            if audit.organization_id != caller.organization_id:
                raise ForbiddenError()
        elif audit.created_by is not None and audit.created_by != caller.user_id:
            raise ForbiddenError()

    async def get_for_caller(self, audit_id: UUID, caller: Caller | None) -> SiteAudit:
        audit = await self.get_by_id(audit_id)
        if audit is None:
            raise NotFoundError("Audit")
        self._check_access(audit, caller)
        return audit

    async def list_audits(
        self,
        caller: Caller,
        page: int = 1,
        per_page: int = 20,
        status: AuditStatus | None = None,
    ) -> tuple[list[SiteAudit], int]:
        """List the caller's organization audits, newest first."""
        if caller.organization_id is not None:
            scope = SiteAudit.organization_id == caller.organization_id
        else:
            scope = and_(SiteAudit.organization_id.is_(None), SiteAudit.created_by == caller.user_id)

        query = select(SiteAudit).where(scope)
        count_query = select(func.count(SiteAudit.id)).where(scope)

        if status:
            query = query.where(SiteAudit.status == status)
            count_query = count_query.where(SiteAudit.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(SiteAudit.created_at.desc())
        query = query.offset((page - 1) * per_page).limit(per_page)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_active(self, caller: Caller) -> SiteAudit | None:
        """The caller's running audit, if any. A long-silent one is failed on sight."""
        if caller.organization_id is None:
            return None

        result = await self.db.execute(
            select(SiteAudit)
            .where(
                SiteAudit.organization_id == caller.organization_id,
                SiteAudit.status.in_(ACTIVE_STATUSES),
            )
            .order_by(SiteAudit.created_at.desc())
            .limit(1)
        )
        audit = result.scalar_one_or_none()
        if audit is None:
            return None

        if staleness(audit) > timedelta(seconds=settings.STALE_AUDIT_SWEEP_SECONDS):
            logger.warning(f"Active audit {audit.id} is stale, marking failed")
            await fail_audit(self.db, audit.id, TIMED_OUT_MESSAGE, [audit.status])
            await self.db.flush()
            return None

        return audit

    async def get_pages(self, audit_id: UUID) -> list[SiteAuditPage]:
        result = await self.db.execute(
            select(SiteAuditPage)
            .where(SiteAuditPage.audit_id == audit_id)
            .order_by(SiteAuditPage.crawled_at)
        )
        return list(result.scalars().all())

    async def get_checks(self, audit_id: UUID) -> list[SiteAuditCheck]:
        result = await self.db.execute(
            select(SiteAuditCheck)
            .where(SiteAuditCheck.audit_id == audit_id)
            .order_by(SiteAuditCheck.created_at)
        )
        return list(result.scalars().all())

    async def count_pages(self, audit_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(SiteAuditPage.id)).where(SiteAuditPage.audit_id == audit_id)
        )
        return result.scalar() or 0

    async def count_checks(self, audit_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(SiteAuditCheck.id)).where(SiteAuditCheck.audit_id == audit_id)
        )
        return result.scalar() or 0

    async def delete_audit(self, audit_id: UUID, caller: Caller) -> None:
        audit = await self.get_for_caller(audit_id, caller)
        if audit.status in ACTIVE_STATUSES:
            raise BadRequestError("Stop the audit before deleting it")
        await self.db.delete(audit)
        await self.db.flush()
        logger.info(f"Deleted audit {audit_id}")

    # =========================================================================
    # Stop / resume / continue
    # =========================================================================

    async def stop_audit(self, audit_id: UUID, caller: Caller | None) -> str:
        """Stop an active audit and return the message for the caller.

        If the runner has gone quiet for longer than the stale threshold the
        audit is failed instead, since nothing is left to honor the stop.
        """
        audit = await self.get_for_caller(audit_id, caller)
        if audit.status not in ACTIVE_STATUSES:
            raise BadRequestError("Audit is not in progress and cannot be stopped")

        if staleness(audit) > timedelta(seconds=settings.STALE_AUDIT_THRESHOLD_SECONDS):
            changed = await fail_audit(
                self.db, audit_id, STOPPED_UNRESPONSIVE_MESSAGE, [audit.status]
            )
            message = "Audit marked as failed (runner was not responding)"
        else:
            previous = audit.status
            changed = await transition(self.db, audit_id, AuditStatus.STOPPED, [previous])
            message = "Audit stop requested"
            # Between batches no worker is running to finalize the stop
            if changed and previous == AuditStatus.BATCH_COMPLETE:
                await score_stopped_audit(self.db, audit_id)

        if not changed:
            raise BadRequestError("Audit is not in progress and cannot be stopped")

        await self.db.flush()
        return message

    async def resume_audit(self, audit_id: UUID, caller: Caller | None) -> str:
        """Put a failed or stopped audit back into checking.

        Returns the resume mode: RESUME_COMPLETE when check rows already exist
        (only site-wide checks and scoring remain), RESUME_FULL otherwise.
        """
        audit = await self.get_for_caller(audit_id, caller)
        if audit.status not in RESUMABLE_STATUSES:
            raise BadRequestError("Only failed or stopped audits can be resumed")

        if await self.count_pages(audit_id) == 0:
            raise BadRequestError("No pages were crawled - nothing to analyze")

        mode = RESUME_COMPLETE if await self.count_checks(audit_id) > 0 else RESUME_FULL

        changed = await transition(
            self.db,
            audit_id,
            AuditStatus.CHECKING,
            [audit.status],
            error_message=None,
        )
        if not changed:
            raise ConflictError("Audit changed state while resuming")

        await self.db.flush()
        logger.info(f"Resuming audit {audit_id} ({mode})")
        return mode

    async def claim_continuation(self, audit_id: UUID) -> int:
        """Atomically claim batch_complete -> crawling. Returns the upcoming batch number."""
        audit = await self.get_by_id(audit_id)
        if audit is None:
            raise NotFoundError("Audit")

        claimed = await transition(
            self.db,
            audit_id,
            AuditStatus.CRAWLING,
            [AuditStatus.BATCH_COMPLETE],
        )
        if not claimed:
            raise ConflictError("Audit not available for continuation")

        await self.db.flush()
        return audit.current_batch + 1

    async def sweep_stale_audits(self) -> int:
        """Fail active audits whose runner died without settling them."""
        cutoff = utcnow() - timedelta(seconds=settings.STALE_AUDIT_SWEEP_SECONDS)
        heartbeat = func.coalesce(SiteAudit.updated_at, SiteAudit.created_at)
        result = await self.db.execute(
            select(SiteAudit.id, SiteAudit.status).where(
                SiteAudit.status.in_(ACTIVE_STATUSES),
                heartbeat < cutoff,
            )
        )

        failed = 0
        for audit_id, status in result.all():
            if await fail_audit(self.db, audit_id, TIMED_OUT_MESSAGE, [status]):
                failed += 1

        if failed:
            logger.warning(f"Marked {failed} stale audits as failed")
        return failed

    # =========================================================================
    # Dismissed checks
    # =========================================================================

    def _require_org(self, caller: Caller) -> UUID:
        if caller.organization_id is None:
            raise ForbiddenError("Dismissing checks requires an organization")
        return caller.organization_id

    async def list_dismissed(self, caller: Caller) -> list[DismissedCheck]:
        org_id = self._require_org(caller)
        result = await self.db.execute(
            select(DismissedCheck)
            .where(DismissedCheck.organization_id == org_id)
            .order_by(DismissedCheck.created_at.desc())
        )
        return list(result.scalars().all())

    async def dismiss_check(self, caller: Caller, data: DismissedCheckCreate) -> DismissedCheck:
        """Dismiss a (check, url) pair. Dismissing twice returns the existing row."""
        org_id = self._require_org(caller)
        result = await self.db.execute(
            select(DismissedCheck).where(
                DismissedCheck.organization_id == org_id,
                DismissedCheck.check_name == data.check_name,
                DismissedCheck.url == data.url,
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing

        dismissed = DismissedCheck(
            organization_id=org_id,
            check_name=data.check_name,
            url=data.url,
            dismissed_by=caller.user_id,
        )
        self.db.add(dismissed)
        await self.db.flush()
        await self.db.refresh(dismissed)
        return dismissed

    async def restore_check(self, caller: Caller, dismissed_id: UUID) -> None:
        org_id = self._require_org(caller)
        dismissed = await self.db.get(DismissedCheck, dismissed_id)
        if dismissed is None:
            raise NotFoundError("Dismissed check")
        if dismissed.organization_id != org_id:
            raise ForbiddenError()
        await self.db.delete(dismissed)
        await self.db.flush()
