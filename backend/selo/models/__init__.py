"""
SQLAlchemy models for Selo.
"""
from selo.models.base import Base, BaseModel
from selo.models.audit import (
    AuditStatus,
    CheckPriority,
    CheckStatus,
    CheckType,
    DismissedCheck,
    SiteAudit,
    SiteAuditCheck,
    SiteAuditPage,
)
from selo.models.crawl import CrawlQueueEntry

__all__ = [
    "Base",
    "BaseModel",
    "AuditStatus",
    "CheckPriority",
    "CheckStatus",
    "CheckType",
    "DismissedCheck",
    "SiteAudit",
    "SiteAuditCheck",
    "SiteAuditPage",
    "CrawlQueueEntry",
]
