"""
Site audit models: the audit job record, crawled pages, check results
and per-organization check dismissals.
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from selo.models.base import Base, BaseModel, UUIDMixin, utcnow


class AuditStatus(str, PyEnum):
    PENDING = "pending"
    CRAWLING = "crawling"
    BATCH_COMPLETE = "batch_complete"
    CHECKING = "checking"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class CheckType(str, PyEnum):
    SEO = "seo"
    AI_READINESS = "ai_readiness"
    TECHNICAL = "technical"


class CheckPriority(str, PyEnum):
    CRITICAL = "critical"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class CheckStatus(str, PyEnum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


class SiteAudit(Base, BaseModel):
    """One crawl-and-check job against a target URL."""

    __tablename__ = "site_audits"

    # Null organization means an ephemeral audit
    organization_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    url = Column(Text, nullable=False)
    status = Column(
        Enum(AuditStatus),
        default=AuditStatus.PENDING,
        nullable=False,
        index=True,
    )
    current_batch = Column(Integer, default=0, nullable=False)
    use_relaxed_ssl = Column(Boolean, default=False, nullable=False)

    urls_discovered = Column(Integer, default=0, nullable=False)
    pages_crawled = Column(Integer, default=0, nullable=False)

    overall_score = Column(Integer, nullable=True)
    seo_score = Column(Integer, nullable=True)
    ai_readiness_score = Column(Integer, nullable=True)
    technical_score = Column(Integer, nullable=True)
    failed_count = Column(Integer, nullable=True)
    warning_count = Column(Integer, nullable=True)
    passed_count = Column(Integer, nullable=True)

    executive_summary = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    pages = relationship("SiteAuditPage", back_populates="audit", cascade="all, delete-orphan")
    checks = relationship("SiteAuditCheck", back_populates="audit", cascade="all, delete-orphan")
    queue_entries = relationship("CrawlQueueEntry", back_populates="audit", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<SiteAudit {self.id} ({self.status.value})>"


class SiteAuditPage(Base, UUIDMixin):
    """A single URL visited by the crawler."""

    __tablename__ = "site_audit_pages"

    audit_id = Column(
        UUID(as_uuid=True),
        ForeignKey("site_audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url = Column(Text, nullable=False)
    status_code = Column(Integer, nullable=True)
    title = Column(Text, nullable=True)
    meta_description = Column(Text, nullable=True)
    last_modified = Column(DateTime(timezone=True), nullable=True)
    is_resource = Column(Boolean, default=False, nullable=False)
    resource_type = Column(String(20), nullable=True)
    fetch_error = Column(Text, nullable=True)
    crawled_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    audit = relationship("SiteAudit", back_populates="pages")
    checks = relationship("SiteAuditCheck", back_populates="page")

    def __repr__(self) -> str:
        return f"<SiteAuditPage {self.url} ({self.status_code})>"


class SiteAuditCheck(Base, UUIDMixin):
    """Verdict of one check definition against one page or the whole site."""

    __tablename__ = "site_audit_checks"

    audit_id = Column(
        UUID(as_uuid=True),
        ForeignKey("site_audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    page_id = Column(
        UUID(as_uuid=True),
        ForeignKey("site_audit_pages.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    check_type = Column(Enum(CheckType), nullable=False)
    check_name = Column(String(100), nullable=False)
    priority = Column(Enum(CheckPriority), nullable=False)
    status = Column(Enum(CheckStatus), nullable=False)
    details = Column(JSONB, default=dict)
    display_name = Column(String(200), nullable=True)
    display_name_passed = Column(String(200), nullable=True)
    learn_more_url = Column(Text, nullable=True)
    is_site_wide = Column(Boolean, default=False, nullable=False)
    description = Column(Text, nullable=True)
    fix_guidance = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    audit = relationship("SiteAudit", back_populates="checks")
    page = relationship("SiteAuditPage", back_populates="checks")

    def __repr__(self) -> str:
        return f"<SiteAuditCheck {self.check_name} ({self.status.value})>"


class DismissedCheck(Base, UUIDMixin):
    """A (check, url) pair an organization chose to ignore."""

    __tablename__ = "dismissed_checks"
    __table_args__ = (
        UniqueConstraint("organization_id", "check_name", "url", name="uq_dismissed_check"),
    )

    organization_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    check_name = Column(String(100), nullable=False)
    url = Column(Text, nullable=False)
    dismissed_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<DismissedCheck {self.check_name} {self.url}>"
