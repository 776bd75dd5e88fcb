"""
Site audit schemas.
"""
from datetime import datetime
from uuid import UUID

from pydantic import Field

from selo.models.audit import AuditStatus, CheckPriority, CheckStatus, CheckType
from selo.schemas.common import BaseSchema, IDSchema


class AuditCreate(BaseSchema):
    """Start audit request."""

    url: str = Field(min_length=1, max_length=2048)
    one_time: bool = False


class AuditCreated(BaseSchema):
    audit_id: UUID


class AuditResponse(IDSchema):
    """Audit job with progress and scores."""

    organization_id: UUID | None
    url: str
    status: AuditStatus
    current_batch: int
    urls_discovered: int
    pages_crawled: int
    overall_score: int | None
    seo_score: int | None
    ai_readiness_score: int | None
    technical_score: int | None
    failed_count: int | None
    warning_count: int | None
    passed_count: int | None
    executive_summary: str | None
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime | None


class AuditPageResponse(IDSchema):
    url: str
    status_code: int | None
    title: str | None
    meta_description: str | None
    last_modified: datetime | None
    is_resource: bool
    resource_type: str | None
    fetch_error: str | None
    crawled_at: datetime


class AuditCheckResponse(IDSchema):
    page_id: UUID | None
    check_type: CheckType
    check_name: str
    priority: CheckPriority
    status: CheckStatus
    details: dict | None
    display_name: str | None
    display_name_passed: str | None
    learn_more_url: str | None
    is_site_wide: bool
    description: str | None
    fix_guidance: str | None
    created_at: datetime


class AuditDetailResponse(BaseSchema):
    """Audit with its crawled pages and check results."""

    audit: AuditResponse
    pages: list[AuditPageResponse]
    checks: list[AuditCheckResponse]
    checks_by_status: dict[str, int] = {}
    checks_by_type: dict[str, int] = {}


class StopResponse(BaseSchema):
    success: bool
    message: str


class ContinueResponse(BaseSchema):
    success: bool
    batch: int


class DismissedCheckCreate(BaseSchema):
    check_name: str = Field(min_length=1, max_length=100)
    url: str = Field(min_length=1)


class DismissedCheckResponse(IDSchema):
    organization_id: UUID
    check_name: str
    url: str
    dismissed_by: UUID | None
    created_at: datetime


class CleanupResponse(BaseSchema):
    success: bool = True
    deleted_checks: int
    deleted_pages: int
    deleted_audits: int
    deleted_queue_entries: int
