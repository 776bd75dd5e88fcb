"""
Site audit endpoints.
"""
from collections import Counter
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from selo.core.deps import CallerOrCron, CurrentCaller, get_db
from selo.models.audit import AuditStatus
from selo.schemas.audit import (
    AuditCheckResponse,
    AuditCreate,
    AuditCreated,
    AuditDetailResponse,
    AuditPageResponse,
    AuditResponse,
    ContinueResponse,
    DismissedCheckCreate,
    DismissedCheckResponse,
    StopResponse,
)
from selo.schemas.common import MessageResponse, PaginatedResponse
from selo.services.audit_service import RESUME_COMPLETE, AuditService

router = APIRouter(prefix="/audits", tags=["Audits"])


@router.post("", response_model=AuditCreated, status_code=status.HTTP_201_CREATED)
async def create_audit(
    data: AuditCreate,
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Start a new site audit."""
    audit_service = AuditService(db)
    audit = await audit_service.create_audit(current_caller, data)

    await db.commit()

    from selo.tasks.audit_tasks import run_audit_batch
    run_audit_batch.delay(str(audit.id))

    return AuditCreated(audit_id=audit.id)


@router.get("", response_model=PaginatedResponse[AuditResponse])
async def list_audits(
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: AuditStatus | None = None,
):
    """List audits for the caller's organization."""
    audit_service = AuditService(db)
    audits, total = await audit_service.list_audits(current_caller, page, per_page, status)

    return PaginatedResponse.create(
        items=[AuditResponse.model_validate(a) for a in audits],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/active", response_model=AuditResponse | None)
async def get_active_audit(
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get the organization's in-progress audit, if any."""
    audit = await AuditService(db).get_active(current_caller)
    await db.commit()
    return AuditResponse.model_validate(audit) if audit else None


# Dismissed checks (declared before /{audit_id} so the path is not captured)


@router.get("/dismissed-checks", response_model=list[DismissedCheckResponse])
async def list_dismissed_checks(
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """List checks the organization has dismissed."""
    dismissed = await AuditService(db).list_dismissed(current_caller)
    return [DismissedCheckResponse.model_validate(d) for d in dismissed]


@router.post(
    "/dismissed-checks",
    response_model=DismissedCheckResponse,
    status_code=status.HTTP_201_CREATED,
)
async def dismiss_check(
    data: DismissedCheckCreate,
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Dismiss a check for a URL in future audits."""
    dismissed = await AuditService(db).dismiss_check(current_caller, data)
    await db.commit()
    return DismissedCheckResponse.model_validate(dismissed)


@router.delete("/dismissed-checks/{dismissed_id}", status_code=status.HTTP_204_NO_CONTENT)
async def restore_check(
    dismissed_id: UUID,
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Remove a dismissal."""
    await AuditService(db).restore_check(current_caller, dismissed_id)
    await db.commit()


@router.get("/{audit_id}", response_model=AuditDetailResponse)
async def get_audit(
    audit_id: UUID,
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get an audit with its pages and check results."""
    audit_service = AuditService(db)
    audit = await audit_service.get_for_caller(audit_id, current_caller)

    pages = await audit_service.get_pages(audit_id)
    checks = await audit_service.get_checks(audit_id)

    return AuditDetailResponse(
        audit=AuditResponse.model_validate(audit),
        pages=[AuditPageResponse.model_validate(p) for p in pages],
        checks=[AuditCheckResponse.model_validate(c) for c in checks],
        checks_by_status=dict(Counter(c.status.value for c in checks)),
        checks_by_type=dict(Counter(c.check_type.value for c in checks)),
    )


@router.delete("/{audit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_audit(
    audit_id: UUID,
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete a finished audit and everything it produced."""
    await AuditService(db).delete_audit(audit_id, current_caller)
    await db.commit()


@router.post("/{audit_id}/stop", response_model=StopResponse)
async def stop_audit(
    audit_id: UUID,
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Stop a running audit. Partial results are kept."""
    message = await AuditService(db).stop_audit(audit_id, current_caller)
    await db.commit()
    return StopResponse(success=True, message=message)


@router.post("/{audit_id}/resume", response_model=MessageResponse)
async def resume_audit(
    audit_id: UUID,
    current_caller: CurrentCaller,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Re-run the check phase of a failed or stopped audit."""
    mode = await AuditService(db).resume_audit(audit_id, current_caller)
    await db.commit()

    from selo.tasks.audit_tasks import complete_audit_checks, resume_audit_checks
    if mode == RESUME_COMPLETE:
        complete_audit_checks.delay(str(audit_id))
    else:
        resume_audit_checks.delay(str(audit_id))

    return MessageResponse(message="Audit resume started")


@router.post("/{audit_id}/continue", response_model=ContinueResponse)
async def continue_audit(
    audit_id: UUID,
    caller: CallerOrCron,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Claim the next crawl batch of an audit paused between batches."""
    audit_service = AuditService(db)
    if caller is not None:
        await audit_service.get_for_caller(audit_id, caller)

    batch = await audit_service.claim_continuation(audit_id)
    await db.commit()

    from selo.tasks.audit_tasks import run_audit_batch
    run_audit_batch.delay(str(audit_id))

    return ContinueResponse(success=True, batch=batch)
