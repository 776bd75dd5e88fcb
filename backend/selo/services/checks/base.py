"""
Check definitions, their execution context and the static registry the
check engine reads from.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from selo.config import settings
from selo.models.audit import CheckPriority, CheckStatus, CheckType


@dataclass
class PageSummary:
    """Read-only view of a crawled page handed to site-wide checks."""

    url: str
    status_code: int | None = None
    title: str | None = None
    meta_description: str | None = None
    last_modified: datetime | None = None
    is_resource: bool = False
    fetch_error: str | None = None

    @classmethod
    def from_page(cls, page) -> "PageSummary":
        return cls(
            url=page.url,
            status_code=page.status_code,
            title=page.title,
            meta_description=page.meta_description,
            last_modified=page.last_modified,
            is_resource=page.is_resource,
            fetch_error=page.fetch_error,
        )


@dataclass
class CheckContext:
    url: str
    html: str
    title: str | None = None
    status_code: int = 200
    all_pages: list[PageSummary] = field(default_factory=list)

    @property
    def origin(self) -> str:
        parsed = urlparse(self.url)
        return f"{parsed.scheme}://{parsed.netloc}"

    def soup(self) -> BeautifulSoup:
        """Parse the page HTML. Each call returns a fresh tree."""
        return BeautifulSoup(self.html or "", "lxml")


@dataclass
class CheckResult:
    status: CheckStatus
    details: dict[str, Any] = field(default_factory=dict)


def passed(message: str | None = None, **details) -> CheckResult:
    if message is not None:
        details["message"] = message
    return CheckResult(status=CheckStatus.PASSED, details=details)


def failed(message: str, **details) -> CheckResult:
    return CheckResult(status=CheckStatus.FAILED, details={"message": message, **details})


def warning(message: str, **details) -> CheckResult:
    return CheckResult(status=CheckStatus.WARNING, details={"message": message, **details})


CheckRun = Callable[[CheckContext], Awaitable[CheckResult]]


@dataclass(frozen=True)
class CheckDefinition:
    name: str
    check_type: CheckType
    priority: CheckPriority
    description: str
    display_name: str
    display_name_passed: str
    run: CheckRun
    is_site_wide: bool = False
    learn_more_url: str | None = None
    fix_guidance: str | None = None


REGISTRY: dict[str, CheckDefinition] = {}


def check(
    name: str,
    *,
    check_type: CheckType,
    priority: CheckPriority,
    description: str,
    display_name: str,
    display_name_passed: str,
    site_wide: bool = False,
    learn_more_url: str | None = None,
    fix_guidance: str | None = None,
):
    """Register an async check function under a stable name."""

    def decorator(func: CheckRun) -> CheckRun:
        if name in REGISTRY:
            raise ValueError(f"Duplicate check name: {name}")
        REGISTRY[name] = CheckDefinition(
            name=name,
            check_type=check_type,
            priority=priority,
            description=description,
            display_name=display_name,
            display_name_passed=display_name_passed,
            run=func,
            is_site_wide=site_wide,
            learn_more_url=learn_more_url,
            fix_guidance=fix_guidance,
        )
        return func

    return decorator


def http_client(follow_redirects: bool = True, timeout: float | None = None) -> httpx.AsyncClient:
    """Client for the extra requests some checks make against the audited site."""
    return httpx.AsyncClient(
        timeout=timeout or settings.CHECK_FETCH_TIMEOUT_SECONDS,
        follow_redirects=follow_redirects,
        headers={"User-Agent": settings.CRAWLER_USER_AGENT},
    )


def meta_content(soup: BeautifulSoup, name: str) -> str | None:
    tag = soup.find("meta", attrs={"name": lambda v: v and v.lower() == name})
    if tag is None:
        return None
    return tag.get("content")


def canonical_href(soup: BeautifulSoup) -> str | None:
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "canonical" in [r.lower() for r in rel]:
            return link["href"]
    return None
