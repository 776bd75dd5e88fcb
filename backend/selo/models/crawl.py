"""
Crawl queue model. Entries live only while an audit is crawling.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from selo.models.base import Base, UUIDMixin, utcnow


class CrawlQueueEntry(Base, UUIDMixin):
    """A discovered URL waiting to be (or already) fetched."""

    __tablename__ = "site_audit_crawl_queue"
    __table_args__ = (
        UniqueConstraint("audit_id", "url", name="uq_crawl_queue_audit_url"),
    )

    audit_id = Column(
        UUID(as_uuid=True),
        ForeignKey("site_audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url = Column(Text, nullable=False)
    depth = Column(Integer, default=0, nullable=False)
    discovered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    # Null until the crawler picks the entry up
    crawled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    audit = relationship("SiteAudit", back_populates="queue_entries")

    def __repr__(self) -> str:
        return f"<CrawlQueueEntry {self.url} depth={self.depth}>"
