"""
SEO checks: on-page metadata, headings, canonicals, URL quality, and the
site-wide crawl health checks (broken links, duplicates, robots/sitemap,
redirects).
"""

import re
from collections import defaultdict
from urllib.parse import urljoin, urlparse, urlunparse

import httpx

from selo.models.audit import CheckPriority, CheckType
from selo.services.checks.base import (
    CheckContext,
    CheckResult,
    canonical_href,
    check,
    failed,
    http_client,
    meta_content,
    passed,
    warning,
)

SEO = CheckType.SEO
CRITICAL = CheckPriority.CRITICAL
RECOMMENDED = CheckPriority.RECOMMENDED
OPTIONAL = CheckPriority.OPTIONAL

TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 60
META_DESCRIPTION_MIN_LENGTH = 150
META_DESCRIPTION_MAX_LENGTH = 160
MAX_IMAGE_SIZE_KB = 500
MAX_REDIRECT_SAMPLES = 20
MAX_REDIRECT_HOPS = 10
SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/sitemap/sitemap.xml")


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


# =============================================================================
# Page-scoped checks
# =============================================================================

@check(
    "missing_title",
    check_type=SEO,
    priority=CRITICAL,
    description="Every page needs a <title> element for search results and browser tabs",
    display_name="Missing Page Title",
    display_name_passed="Page Title",
    learn_more_url="https://developers.google.com/search/docs/appearance/title-link",
    fix_guidance="Add a unique, descriptive <title> element inside the page <head>.",
)
async def missing_title(context: CheckContext) -> CheckResult:
    soup = context.soup()
    title = soup.title.get_text(strip=True) if soup.title else ""

    if not title:
        return failed("Page is missing a <title> tag or the title is empty.")

    return passed(f"Page title found: {title}", title=title)


@check(
    "title_length",
    check_type=SEO,
    priority=OPTIONAL,
    description=f"Page titles should be between {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters",
    display_name="Title Length",
    display_name_passed="Title Length",
    learn_more_url="https://developers.google.com/search/docs/appearance/title-link",
)
async def title_length(context: CheckContext) -> CheckResult:
    soup = context.soup()
    title = soup.title.get_text(strip=True) if soup.title else ""

    if not title:
        return passed()

    length = len(title)
    if length < TITLE_MIN_LENGTH or length > TITLE_MAX_LENGTH:
        return warning(
            f"Title is {length} characters (recommended: {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH})",
            length=length,
        )

    return passed()


@check(
    "missing_meta_description",
    check_type=SEO,
    priority=CRITICAL,
    description="Meta descriptions provide the snippet shown in search results",
    display_name="Missing Meta Description",
    display_name_passed="Meta Description",
    learn_more_url="https://developers.google.com/search/docs/appearance/snippet",
    fix_guidance="Add <meta name=\"description\" content=\"...\"> summarising the page in 150-160 characters.",
)
async def missing_meta_description(context: CheckContext) -> CheckResult:
    description = (meta_content(context.soup(), "description") or "").strip()

    if not description:
        return failed("Page is missing a meta description or it is empty.")

    return passed("Meta description found", length=len(description))


@check(
    "meta_description_length",
    check_type=SEO,
    priority=RECOMMENDED,
    description=(
        f"Meta description should be between "
        f"{META_DESCRIPTION_MIN_LENGTH}-{META_DESCRIPTION_MAX_LENGTH} characters"
    ),
    display_name="Meta Description Length",
    display_name_passed="Meta Description Length",
    learn_more_url="https://developers.google.com/search/docs/appearance/snippet",
)
async def meta_description_length(context: CheckContext) -> CheckResult:
    description = (meta_content(context.soup(), "description") or "").strip()

    # Missing descriptions are reported by missing_meta_description
    if not description:
        return passed()

    length = len(description)
    if length < META_DESCRIPTION_MIN_LENGTH or length > META_DESCRIPTION_MAX_LENGTH:
        return warning(
            f"Meta description is {length} characters "
            f"(recommended: {META_DESCRIPTION_MIN_LENGTH}-{META_DESCRIPTION_MAX_LENGTH})",
            length=length,
        )

    return passed()


@check(
    "missing_h1",
    check_type=SEO,
    priority=RECOMMENDED,
    description="Each page should have exactly one H1 describing its main topic",
    display_name="Missing H1 Heading",
    display_name_passed="H1 Heading",
    learn_more_url="https://developer.mozilla.org/en-US/docs/Web/HTML/Element/Heading_Elements",
)
async def missing_h1(context: CheckContext) -> CheckResult:
    h1_tags = [h.get_text(strip=True) for h in context.soup().find_all("h1")]
    h1_tags = [h for h in h1_tags if h]

    if not h1_tags:
        return failed("Page has no H1 heading. Add one H1 that describes the page's main topic.")

    if len(h1_tags) > 1:
        return warning(
            f"Page has {len(h1_tags)} H1 headings. Use a single H1 and H2-H6 for sub-sections.",
            count=len(h1_tags),
            headings=h1_tags[:5],
        )

    return passed(f"H1 found: {h1_tags[0]}")


@check(
    "heading_hierarchy",
    check_type=SEO,
    priority=RECOMMENDED,
    description="Heading levels should not be skipped",
    display_name="Skipped Heading Levels",
    display_name_passed="Heading Hierarchy",
    learn_more_url="https://developer.mozilla.org/en-US/docs/Web/HTML/Element/Heading_Elements#usage_notes",
)
async def heading_hierarchy(context: CheckContext) -> CheckResult:
    headings = [
        int(tag.name[1])
        for tag in context.soup().find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
    ]

    if not headings:
        return passed()

    skipped_levels = []
    previous_level = 0
    for level in headings:
        if previous_level > 0 and level > previous_level + 1:
            skipped_levels.append(f"H{previous_level} → H{level}")
        previous_level = level

    if skipped_levels:
        return warning(
            f"Headings should follow a logical order (H1 → H2 → H3). "
            f"Skipped: {', '.join(skipped_levels)}. This helps screen readers and "
            f"search engines understand content structure.",
            skipped_levels=skipped_levels,
        )

    return passed("Headings follow correct hierarchy")


@check(
    "missing_canonical",
    check_type=SEO,
    priority=RECOMMENDED,
    description="A canonical tag tells search engines which URL is the preferred version of a page",
    display_name="Missing Canonical Tag",
    display_name_passed="Canonical Tag",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/consolidate-duplicate-urls",
)
async def missing_canonical(context: CheckContext) -> CheckResult:
    href = (canonical_href(context.soup()) or "").strip()

    if not href:
        return warning(
            "Page has no canonical tag. Add <link rel=\"canonical\"> pointing to the preferred URL."
        )

    return passed(f"Canonical tag found: {href}", canonical=href)


def _normalize_canonical(url: str) -> str:
    """Drop the fragment and any trailing slash, except on the bare root path."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    normalized = urlunparse(parsed._replace(fragment=""))
    if normalized.endswith("/") and parsed.path != "/":
        normalized = normalized[:-1]
    return normalized


@check(
    "canonical_validation",
    check_type=SEO,
    priority=RECOMMENDED,
    description="Canonical URLs should be valid, accessible, and self-referencing on unique pages",
    display_name="Invalid Canonical URL",
    display_name_passed="Valid Canonical URLs",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/consolidate-duplicate-urls",
)
async def canonical_validation(context: CheckContext) -> CheckResult:
    canonical = (canonical_href(context.soup()) or "").strip()

    # Absence is reported by missing_canonical
    if not canonical:
        return passed("No canonical tag (handled by separate check)")

    try:
        canonical_url = urljoin(context.url, canonical)
        parsed = urlparse(canonical_url)
    except ValueError:
        parsed = None
    if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
        return failed(
            f"Canonical URL is malformed: \"{canonical}\". Use absolute URLs for canonical tags.",
            canonical=canonical,
        )

    normalized_canonical = _normalize_canonical(canonical_url)
    issues = []

    if _normalize_canonical(context.url) != normalized_canonical:
        issues.append(
            f"Canonical points to different URL: {canonical_url} (current: {context.url}). "
            f"Ensure this is intentional for duplicate content."
        )

    try:
        async with http_client(follow_redirects=False) as client:
            head = await client.head(canonical_url)
            if head.status_code >= 400:
                return failed(
                    f"Canonical URL returns {head.status_code} error. "
                    f"Canonical must point to an accessible page.",
                    canonical=canonical_url,
                    status=head.status_code,
                )
            if 300 <= head.status_code < 400:
                return warning(
                    f"Canonical URL redirects ({head.status_code}). Canonical should point "
                    f"directly to the final URL, not a redirect.",
                    canonical=canonical_url,
                    status=head.status_code,
                )

            target = await client.get(canonical_url)

        target_canonical = canonical_href(CheckContext(url=canonical_url, html=target.text).soup())
        if target_canonical:
            target_canonical_url = urljoin(canonical_url, target_canonical.strip())
            if _normalize_canonical(target_canonical_url) != normalized_canonical:
                return failed(
                    f"Canonical chain detected: Page points to {canonical_url}, which points to "
                    f"{target_canonical_url}. Canonical should point directly to the final URL.",
                    canonical=canonical_url,
                    target_canonical=target_canonical_url,
                )
    except httpx.HTTPError as e:
        return failed(
            f"Could not verify canonical URL ({canonical_url}). Ensure it is accessible.",
            canonical=canonical_url,
            error=str(e) or type(e).__name__,
        )

    if issues:
        return warning(" ".join(issues), canonical=canonical_url)

    return passed(f"Canonical URL is valid and accessible: {canonical_url}", canonical=canonical_url)


@check(
    "noindex_on_important_pages",
    check_type=SEO,
    priority=CRITICAL,
    description=(
        "Noindex meta tags prevent search engines from indexing pages. "
        "Critical pages should not have noindex."
    ),
    display_name="Noindex Tag on Important Pages",
    display_name_passed="No Noindex Issues",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/block-indexing",
)
async def noindex_on_important_pages(context: CheckContext) -> CheckResult:
    soup = context.soup()
    robots = (meta_content(soup, "robots") or "").lower()
    googlebot = (meta_content(soup, "googlebot") or "").lower()

    if "noindex" not in robots and "noindex" not in googlebot:
        return passed("No noindex directives found on this page")

    directive = robots or googlebot
    path = urlparse(context.url).path
    is_important = path in ("", "/") or len([s for s in path.split("/") if s]) <= 1

    if is_important:
        return failed(
            f"This important page has a noindex directive ({directive}), preventing search "
            f"engines from indexing it. Remove the noindex tag unless this is intentional.",
            meta_content=directive,
            path=path,
        )

    return warning(
        f"Page has noindex directive ({directive}). Verify this is intentional.",
        meta_content=directive,
    )


STOP_WORDS = frozenset("""
    a an the and or but in on at to for of with by is are was were be been being
    have has had do does did will would could should may might must can this that
    these those i you he she it we they what which who when where why how all each
    every both few more most other some such no not only own same so than too very
    just also
""".split())

ID_PATTERNS = (
    re.compile(r"^[0-9]+$"),
    re.compile(r"^[a-f0-9]{8,}$", re.IGNORECASE),
    re.compile(r"^[a-z0-9]{20,}$", re.IGNORECASE),
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
)


def _extract_words(text: str) -> list[str]:
    cleaned = re.sub(r"[^a-z0-9\s-]", " ", text.lower())
    return [
        word for word in re.split(r"[\s-]+", cleaned)
        if len(word) > 2 and word not in STOP_WORDS
    ]


def _url_segments(url: str) -> list[str]:
    path = urlparse(url).path
    # File extensions are not part of the slug
    return [re.sub(r"\.[^.]+$", "", segment) for segment in path.split("/") if segment]


@check(
    "non_descriptive_url",
    check_type=SEO,
    priority=RECOMMENDED,
    description="URL slugs should be descriptive and relate to page content",
    display_name="Non-Descriptive URL",
    display_name_passed="Descriptive URL",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/url-structure",
)
async def non_descriptive_url(context: CheckContext) -> CheckResult:
    segments = _url_segments(context.url)
    if not segments:
        return passed("Homepage - no URL slug to check")

    slug = segments[-1]
    if any(pattern.match(slug) for pattern in ID_PATTERNS):
        return failed(
            f"URL contains ID-like slug \"{slug}\" instead of descriptive words. Use "
            f"keyword-rich URLs like /services/web-design instead of /page/12345",
            slug=slug,
        )

    issues = []
    slug_words = _extract_words(slug.replace("-", " "))
    if not slug_words:
        issues.append(f"Slug \"{slug}\" contains no meaningful keywords")

    if "_" in slug:
        issues.append(
            "URL uses underscores instead of hyphens. Search engines prefer hyphens as word separators"
        )

    if slug != slug.lower():
        issues.append("URL contains uppercase characters. Use lowercase for consistency")

    full_path = "/" + "/".join(segments)
    if len(full_path) > 75:
        issues.append(
            f"URL path is {len(full_path)} characters. Consider shortening for better usability"
        )

    if context.title and len(slug_words) >= 2:
        title_words = _extract_words(context.title)
        if title_words and not any(word in title_words for word in slug_words):
            issues.append(
                "URL slug words don't appear in page title. Consider aligning URL with page "
                "content for better SEO"
            )

    if issues:
        return warning(". ".join(issues), slug=slug, path=full_path)

    return passed(f"URL \"{slug}\" is descriptive and well-formatted")


@check(
    "missing_alt_text",
    check_type=SEO,
    priority=RECOMMENDED,
    description="Images need alt text for accessibility and image search",
    display_name="Images Missing Alt Text",
    display_name_passed="Image Alt Text",
    learn_more_url="https://developers.google.com/search/docs/appearance/google-images#use-descriptive-alt-text",
)
async def missing_alt_text(context: CheckContext) -> CheckResult:
    images = context.soup().find_all("img")
    if not images:
        return passed("No images found on this page")

    # An empty alt="" marks a decorative image and is valid
    missing = [img.get("src", "") for img in images if img.get("alt") is None]

    if missing:
        return failed(
            f"{_plural(len(missing), 'image')} missing alt text out of {len(images)}. "
            f"Describe each meaningful image with an alt attribute.",
            count=len(missing),
            images=missing[:10],
        )

    return passed(f"All {len(images)} images have alt attributes")


@check(
    "oversized_images",
    check_type=SEO,
    priority=OPTIONAL,
    description=f"Images over {MAX_IMAGE_SIZE_KB}KB affect page load speed",
    display_name="Oversized Images",
    display_name_passed="Image Sizes",
    learn_more_url="https://web.dev/articles/optimize-cls#images_without_dimensions",
)
async def oversized_images(context: CheckContext) -> CheckResult:
    sources = []
    for img in context.soup().find_all("img", src=True):
        try:
            sources.append(urljoin(context.url, img["src"]))
        except ValueError:
            continue

    oversized = []
    checked = 0
    async with http_client() as client:
        for src in sources:
            try:
                response = await client.head(src)
            except httpx.HTTPError:
                continue
            if not response.is_success:
                continue
            content_length = response.headers.get("content-length")
            if not content_length or not content_length.isdigit():
                continue
            checked += 1
            size_bytes = int(content_length)
            if size_bytes > MAX_IMAGE_SIZE_KB * 1024:
                oversized.append({"src": src, "size_kb": round(size_bytes / 1024)})

    if oversized:
        largest = max(oversized, key=lambda image: image["size_kb"])
        return failed(
            f"{_plural(len(oversized), 'image')} over {MAX_IMAGE_SIZE_KB}KB. Largest: "
            f"{largest['size_kb']}KB. Compress images or use modern formats (WebP, AVIF) "
            f"for faster load times.",
            count=len(oversized),
            images=oversized[:5],
        )

    if checked:
        return passed(f"All {checked} images are under {MAX_IMAGE_SIZE_KB}KB")
    return passed("No images found to check")


# =============================================================================
# Site-wide checks
# =============================================================================

@check(
    "broken_internal_links",
    check_type=SEO,
    priority=CRITICAL,
    description="Internal links returning 4xx/5xx errors hurt SEO and user experience",
    display_name="Broken Internal Links",
    display_name_passed="Internal Links",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/http-network-errors",
    site_wide=True,
)
async def broken_internal_links(context: CheckContext) -> CheckResult:
    # Pages that could not be fetched at all are recorded with status 0
    broken = [
        page for page in context.all_pages
        if (page.status_code or 0) >= 400 or page.fetch_error
    ]

    if not broken:
        return passed(
            f"All {len(context.all_pages)} internal pages returned successful status codes",
            total_pages=len(context.all_pages),
        )

    by_status = defaultdict(list)
    for page in broken:
        by_status[page.status_code or 0].append(page.url)

    status_summary = ", ".join(
        f"{status}: {_plural(len(urls), 'page')}" for status, urls in by_status.items()
    )

    return failed(
        f"Found {_plural(len(broken), 'broken internal link')} ({status_summary}). "
        f"Fix or remove these links to improve SEO and user experience.",
        broken_count=len(broken),
        broken_urls=[{"url": page.url, "status": page.status_code} for page in broken[:10]],
        by_status={str(status): urls for status, urls in by_status.items()},
    )


def _group_duplicates(values: dict[str, list[str]]) -> list[dict]:
    duplicates = [
        {"value": value, "urls": urls, "count": len(urls)}
        for value, urls in values.items()
        if len(urls) > 1
    ]
    duplicates.sort(key=lambda d: d["count"], reverse=True)
    return duplicates


@check(
    "duplicate_titles",
    check_type=SEO,
    priority=CRITICAL,
    description="Duplicate page titles confuse search engines and reduce click-through rates",
    display_name="Duplicate Page Titles",
    display_name_passed="Unique Page Titles",
    learn_more_url="https://developers.google.com/search/docs/appearance/title-link",
    site_wide=True,
)
async def duplicate_titles(context: CheckContext) -> CheckResult:
    title_to_urls = defaultdict(list)
    for page in context.all_pages:
        title = (page.title or "").strip()
        if title:
            title_to_urls[title].append(page.url)

    duplicates = _group_duplicates(title_to_urls)
    if not duplicates:
        return passed("All page titles are unique", unique_titles=len(title_to_urls))

    affected = sum(d["count"] for d in duplicates)
    summary = ", ".join(
        f"\"{_truncate(d['value'], 40)}\" ({d['count']} pages)" for d in duplicates[:3]
    )

    return failed(
        f"Found {_plural(len(duplicates), 'duplicate title')} affecting {affected} pages. "
        f"Examples: {summary}. Each page should have a unique, descriptive title.",
        duplicate_count=len(duplicates),
        affected_pages=affected,
        duplicates=[
            {"title": d["value"], "urls": d["urls"][:5], "count": d["count"]}
            for d in duplicates[:10]
        ],
    )


@check(
    "duplicate_meta_descriptions",
    check_type=SEO,
    priority=RECOMMENDED,
    description="Duplicate meta descriptions reduce click-through rates from search results",
    display_name="Duplicate Meta Descriptions",
    display_name_passed="Unique Meta Descriptions",
    learn_more_url="https://developers.google.com/search/docs/appearance/snippet",
    site_wide=True,
)
async def duplicate_meta_descriptions(context: CheckContext) -> CheckResult:
    description_to_urls = defaultdict(list)
    for page in context.all_pages:
        if page.is_resource:
            continue
        description = (page.meta_description or "").strip()
        if description:
            description_to_urls[description].append(page.url)

    duplicates = _group_duplicates(description_to_urls)
    if not duplicates:
        return passed(
            "All meta descriptions are unique",
            unique_descriptions=len(description_to_urls),
        )

    affected = sum(d["count"] for d in duplicates)
    summary = ", ".join(
        f"\"{_truncate(d['value'], 50)}\" ({d['count']} pages)" for d in duplicates[:3]
    )

    return warning(
        f"Found {_plural(len(duplicates), 'duplicate meta description')} affecting {affected} "
        f"pages. Examples: {summary}. Each page should have a unique meta description to "
        f"improve click-through rates.",
        duplicate_count=len(duplicates),
        affected_pages=affected,
        duplicates=[
            {"description": d["value"], "urls": d["urls"][:5], "count": d["count"]}
            for d in duplicates[:10]
        ],
    )


@check(
    "http_to_https_redirect",
    check_type=SEO,
    priority=CRITICAL,
    description="HTTP version should redirect to HTTPS to consolidate SEO signals and ensure security",
    display_name="Missing HTTP to HTTPS Redirect",
    display_name_passed="HTTP to HTTPS Redirect",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/consolidate-duplicate-urls",
    site_wide=True,
)
async def http_to_https_redirect(context: CheckContext) -> CheckResult:
    if urlparse(context.url).scheme == "http":
        return passed("Site uses HTTP (SSL check handles this separately)")

    http_url = context.url.replace("https://", "http://", 1)

    try:
        async with http_client(follow_redirects=False) as client:
            response = await client.head(http_url)
    except httpx.HTTPError:
        return passed(
            "HTTP version is not accessible (likely server-level block)",
            note="This is fine as long as all links use HTTPS",
        )

    status = response.status_code
    location = response.headers.get("location")
    if 300 <= status < 400 and location:
        if urlparse(urljoin(http_url, location)).scheme == "https":
            return passed(
                f"HTTP correctly redirects to HTTPS ({status} redirect)",
                redirect_status=status,
                redirect_location=location,
            )
        return warning(
            f"HTTP redirects but not to HTTPS. Location: {location}",
            redirect_status=status,
            redirect_location=location,
        )

    return failed(
        f"HTTP version is accessible without redirecting to HTTPS (returned {status}). "
        f"Configure a 301 redirect from HTTP to HTTPS to consolidate SEO signals and ensure security.",
        http_status=status,
    )


ROBOTS_USER_AGENT = re.compile(r"^User-agent:", re.IGNORECASE | re.MULTILINE)
ROBOTS_SITEMAP = re.compile(r"^Sitemap:", re.IGNORECASE | re.MULTILINE)
ROBOTS_RULE = re.compile(r"^(Dis)?allow:", re.IGNORECASE | re.MULTILINE)
ROBOTS_SITEMAP_URL = re.compile(r"^Sitemap:\s*(.+)$", re.IGNORECASE | re.MULTILINE)


@check(
    "missing_robots_txt",
    check_type=SEO,
    priority=CRITICAL,
    description="robots.txt helps control how search engines crawl your site",
    display_name="Missing robots.txt",
    display_name_passed="robots.txt",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/robots/intro",
    site_wide=True,
)
async def missing_robots_txt(context: CheckContext) -> CheckResult:
    robots_url = f"{context.origin}/robots.txt"

    try:
        async with http_client() as client:
            response = await client.get(robots_url)
    except httpx.HTTPError:
        return failed(
            "Could not access robots.txt (connection error). Ensure the file exists and is accessible."
        )

    if not response.is_success:
        return failed(
            f"No robots.txt found (HTTP {response.status_code}). Create a robots.txt file to "
            f"control search engine crawling behavior and point to your sitemap.",
            status_code=response.status_code,
        )

    content = response.text
    if not ROBOTS_USER_AGENT.search(content):
        return warning(
            "robots.txt exists but appears to be empty or malformed. Add User-agent "
            "directives to properly configure crawler behavior.",
            url=robots_url,
        )

    has_sitemap = bool(ROBOTS_SITEMAP.search(content))
    has_rules = bool(ROBOTS_RULE.search(content))
    features = []
    if has_rules:
        features.append("crawl rules")
    if has_sitemap:
        features.append("sitemap reference")
    suffix = f" with {' and '.join(features)}" if features else ""

    return passed(
        f"robots.txt is properly configured{suffix}",
        url=robots_url,
        has_sitemap=has_sitemap,
        has_crawl_rules=has_rules,
    )


@check(
    "missing_sitemap",
    check_type=SEO,
    priority=CRITICAL,
    description="XML sitemap helps search engines discover and index pages",
    display_name="Missing XML Sitemap",
    display_name_passed="XML Sitemap",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/sitemaps/overview",
    site_wide=True,
)
async def missing_sitemap(context: CheckContext) -> CheckResult:
    sitemap_url = None
    sitemap_error = None

    async with http_client() as client:
        for path in SITEMAP_PATHS:
            candidate = f"{context.origin}{path}"
            try:
                response = await client.head(candidate)
            except httpx.HTTPError:
                continue
            if response.is_success:
                sitemap_url = candidate
                break

        try:
            robots = await client.get(f"{context.origin}/robots.txt")
        except httpx.HTTPError:
            robots = None

        match = ROBOTS_SITEMAP_URL.search(robots.text) if robots is not None and robots.is_success else None
        if match and sitemap_url is None:
            declared = match.group(1).strip()
            try:
                response = await client.head(declared)
                if response.is_success:
                    sitemap_url = declared
            except httpx.HTTPError:
                sitemap_error = f"Sitemap declared in robots.txt ({declared}) but not accessible"

    if sitemap_url:
        return passed(f"XML sitemap found at {sitemap_url}", sitemap_url=sitemap_url)

    if sitemap_error:
        return warning(sitemap_error)

    return failed(
        "No XML sitemap found. Create a sitemap.xml file listing all important pages to help "
        "search engines discover your content. Most CMS platforms can generate this automatically."
    )


async def _follow_redirect_chain(client: httpx.AsyncClient, start_url: str) -> list[str]:
    chain = [start_url]
    current = start_url

    for _ in range(MAX_REDIRECT_HOPS):
        try:
            response = await client.head(current)
        except httpx.HTTPError:
            break

        location = response.headers.get("location")
        if not (300 <= response.status_code < 400) or not location:
            break

        next_url = urljoin(current, location)
        chain.append(next_url)
        current = next_url
        if next_url in chain[:-1]:
            break

    return chain


@check(
    "redirect_chains",
    check_type=SEO,
    priority=RECOMMENDED,
    description=(
        "Redirect chains waste crawl budget and dilute PageRank. "
        "Redirects should go directly to the final URL."
    ),
    display_name="Redirect Chains Detected",
    display_name_passed="No Redirect Chains",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/301-redirects#redirect-chains",
    site_wide=True,
)
async def redirect_chains(context: CheckContext) -> CheckResult:
    redirect_pages = [
        page for page in context.all_pages
        if 300 <= (page.status_code or 200) < 400
    ]
    if not redirect_pages:
        return passed("No redirects found in crawled pages")

    samples = redirect_pages[:MAX_REDIRECT_SAMPLES]
    chains = []
    async with http_client(follow_redirects=False) as client:
        for page in samples:
            chain = await _follow_redirect_chain(client, page.url)
            if len(chain) > 2:
                chains.append({"url": page.url, "chain": chain, "hops": len(chain) - 1})

    if not chains:
        return passed(
            f"Checked {_plural(len(samples), 'redirect')}, no chains detected",
            redirects_checked=len(samples),
        )

    chains.sort(key=lambda c: c["hops"], reverse=True)
    max_hops = chains[0]["hops"]
    summary = ", ".join(f"{c['url']} ({c['hops']} hops)" for c in chains[:3])
    message = (
        f"Found {_plural(len(chains), 'redirect chain')} with up to {max_hops} hops. "
        f"Examples: {summary}. Update internal links to point directly to the final URL."
    )
    details = {
        "chain_count": len(chains),
        "max_hops": max_hops,
        "longest_chains": [
            {"start_url": c["url"], "hops": c["hops"], "chain": c["chain"]}
            for c in chains[:5]
        ],
    }

    if max_hops >= 3:
        return failed(message, **details)
    return warning(message, **details)
