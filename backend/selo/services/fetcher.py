"""
Page fetching and link extraction for the site audit crawler.

Fetches go through httpx with redirects followed. When a target presents a
certificate chain that standard verification rejects, the fetch is retried
once without verification, following redirects by hand so the final URL is
resolved the same way as on the normal path.
"""

import logging
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from urllib.parse import urljoin, urlparse, urlunparse

import httpx
from bs4 import BeautifulSoup

from selo.config import settings

logger = logging.getLogger(__name__)

CERTIFICATE_ERROR_MARKERS = ("certificate", "ssl", "tls", "unable_to_verify_leaf_signature")
REDIRECT_STATUSES = {301, 302, 303, 307, 308}


@dataclass
class FetchResult:
    url: str
    final_url: str
    status_code: int = 0
    html: str = ""
    content_type: str = ""
    last_modified: datetime | None = None
    error: str | None = None
    used_relaxed_ssl: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_last_modified(value: str | None) -> datetime | None:
    """Parse an RFC 1123 Last-Modified header into an aware datetime."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_certificate_error(exc: BaseException) -> bool:
    """True when the exception (or anything in its cause chain) is TLS related."""
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLError):
            return True
        message = str(current).lower()
        if any(marker in message for marker in CERTIFICATE_ERROR_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def normalize_url(url: str) -> str:
    """Drop the fragment and a trailing slash so equivalent URLs collapse."""
    parsed = urlparse(url)
    cleaned = urlunparse(parsed._replace(fragment=""))
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    return cleaned


def _host_variants(url: str) -> set[str]:
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return set()
    if host.startswith("www."):
        return {host, host[4:]}
    return {host, f"www.{host}"}


def extract_links(html: str, base_url: str, final_url: str | None = None) -> set[str]:
    """Collect same-site links from anchors on a page.

    Relative hrefs resolve against the post-redirect URL. A link is kept when
    its host matches the base or final host, either with or without "www.".
    """
    resolve_against = final_url or base_url
    valid_hosts = _host_variants(base_url) | _host_variants(resolve_against)

    soup = BeautifulSoup(html, "lxml")
    links = set()

    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:", "data:")):
            continue

        try:
            absolute = urljoin(resolve_against, href)
            parsed = urlparse(absolute)
            # Rejects what the fetcher could never request (bad port, oversized URL)
            httpx.URL(absolute)
        except (ValueError, httpx.InvalidURL):
            continue

        if parsed.scheme not in ("http", "https"):
            continue
        if (parsed.hostname or "").lower() not in valid_hosts:
            continue

        links.add(normalize_url(absolute))

    return links


class Fetcher:
    """GET a URL and report status, body and Last-Modified, never raising."""

    def __init__(
        self,
        user_agent: str | None = None,
        timeout: float | None = None,
        max_redirects: int | None = None,
    ):
        self.user_agent = user_agent or settings.CRAWLER_USER_AGENT
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self.max_redirects = max_redirects or settings.MAX_REDIRECTS

    @property
    def headers(self) -> dict[str, str]:
        return {"User-Agent": self.user_agent}

    async def fetch(self, url: str, force_relaxed_ssl: bool = False) -> FetchResult:
        if force_relaxed_ssl:
            return await self._fetch_relaxed(url)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                headers=self.headers,
            ) as client:
                response = await client.get(url)
                return self._to_result(url, response)
        except httpx.InvalidURL as e:
            logger.warning(f"Skipping malformed URL {url}: {e}")
            return FetchResult(url=url, final_url=url, error=str(e) or type(e).__name__)
        except httpx.HTTPError as e:
            if is_certificate_error(e):
                logger.info(f"Certificate error for {url}, retrying without verification: {e}")
                return await self._fetch_relaxed(url)
            logger.warning(f"Fetch failed for {url}: {e}")
            return FetchResult(url=url, final_url=url, error=str(e) or type(e).__name__)

    async def _fetch_relaxed(self, url: str) -> FetchResult:
        current = url
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                verify=False,
                headers=self.headers,
            ) as client:
                for _ in range(self.max_redirects + 1):
                    response = await client.get(current)
                    location = response.headers.get("location")
                    if response.status_code in REDIRECT_STATUSES and location:
                        current = urljoin(current, location)
                        continue
                    result = self._to_result(url, response, final_url=current)
                    result.used_relaxed_ssl = True
                    return result
        # InvalidURL is not an HTTPError; a bad Location header raises it too
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Relaxed fetch failed for {url}: {e}")
            return FetchResult(
                url=url,
                final_url=current,
                error=str(e) or type(e).__name__,
                used_relaxed_ssl=True,
            )

        return FetchResult(
            url=url,
            final_url=current,
            error=f"Exceeded {self.max_redirects} redirects",
            used_relaxed_ssl=True,
        )

    def _to_result(
        self,
        url: str,
        response: httpx.Response,
        final_url: str | None = None,
    ) -> FetchResult:
        content_type = response.headers.get("content-type", "")
        html = response.text if _is_textual(content_type) else ""
        return FetchResult(
            url=url,
            final_url=final_url or str(response.url),
            status_code=response.status_code,
            html=html,
            content_type=content_type,
            last_modified=parse_last_modified(response.headers.get("last-modified")),
        )


def _is_textual(content_type: str) -> bool:
    if not content_type:
        return True
    content_type = content_type.lower()
    return "html" in content_type or "text" in content_type or "xml" in content_type
