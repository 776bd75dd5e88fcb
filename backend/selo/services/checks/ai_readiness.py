"""
AI-readiness checks: can LLM crawlers reach, read and identify the site?
"""

import json
import re
import time
from datetime import datetime, timedelta, timezone

import httpx

from selo.models.audit import CheckPriority, CheckType
from selo.models.base import as_aware
from selo.services.checks.base import (
    CheckContext,
    CheckResult,
    check,
    failed,
    http_client,
    passed,
    warning,
)

AI = CheckType.AI_READINESS
CRITICAL = CheckPriority.CRITICAL
RECOMMENDED = CheckPriority.RECOMMENDED
OPTIONAL = CheckPriority.OPTIONAL

AI_CRAWLERS = ("GPTBot", "PerplexityBot", "ClaudeBot", "ChatGPT-User", "Anthropic-AI")
SPA_SELECTORS = "#root, #__next, [data-reactroot], #app, [data-v-], [ng-app], [data-ng-app], app-root"
MARKDOWN_PATHS = ("/llms-full.txt", "/README.md", "/docs.md", "/about.md", "/index.md")
MARKDOWN_CONTENT_TYPES = ("text/markdown", "text/plain", "text/x-markdown")
ORGANIZATION_TYPES = {"Organization", "LocalBusiness", "Corporation"}
STALE_CONTENT_DAYS = 90
SLOW_RESPONSE_TIMEOUT_SECONDS = 10
LASTMOD_PATTERN = re.compile(r"<lastmod>([^<]+)</lastmod>", re.IGNORECASE)


@check(
    "ai_crawlers_blocked",
    check_type=AI,
    priority=CRITICAL,
    description="Check if robots.txt blocks AI crawlers like GPTBot, ClaudeBot",
    display_name="AI Crawlers Blocked",
    display_name_passed="AI Crawler Access",
    learn_more_url="https://platform.openai.com/docs/bots",
    site_wide=True,
)
async def ai_crawlers_blocked(context: CheckContext) -> CheckResult:
    try:
        async with http_client() as client:
            response = await client.get(f"{context.origin}/robots.txt")
    except httpx.HTTPError:
        return passed()

    # No robots.txt means nothing is blocked
    if not response.is_success:
        return passed()

    text = response.text
    blocked = [
        bot for bot in AI_CRAWLERS
        if re.search(rf"User-agent:\s*{re.escape(bot)}[\s\S]*?Disallow:\s*/", text, re.IGNORECASE)
    ]

    if blocked:
        return failed(f"AI crawlers blocked: {', '.join(blocked)}", blocked=blocked)

    return passed("robots.txt allows known AI crawlers")


@check(
    "js_rendered_content",
    check_type=AI,
    priority=CRITICAL,
    description="AI crawlers cannot execute JavaScript - content must be in initial HTML",
    display_name="JavaScript-Dependent Content",
    display_name_passed="Server-Rendered Content",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/javascript/javascript-seo-basics",
)
async def js_rendered_content(context: CheckContext) -> CheckResult:
    script_count = len(context.soup().find_all("script"))

    soup = context.soup()
    for tag in soup(["script", "style", "noscript", "nav", "header", "footer"]):
        tag.decompose()

    body = soup.body or soup
    word_count = len(body.get_text(" ").split())
    is_spa = bool(soup.select(SPA_SELECTORS))
    paragraph_count = len(soup.find_all("p"))
    heading_count = len(soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]))

    if word_count >= 100 and (paragraph_count >= 2 or heading_count >= 1):
        return passed(
            f"Page has {word_count} words of server-rendered content that AI crawlers can read.",
            word_count=word_count,
            paragraph_count=paragraph_count,
        )

    if is_spa and word_count < 50:
        return failed(
            f"Page appears to be a JavaScript SPA with only {word_count} words in initial HTML. "
            f"AI crawlers like GPTBot cannot execute JavaScript and will see a nearly blank page. "
            f"Implement server-side rendering (SSR) or static site generation (SSG).",
            word_count=word_count,
            is_spa=True,
        )

    if word_count < 50 and script_count > 10:
        return failed(
            f"Page has only {word_count} words but {script_count} script tags. Content may be "
            f"rendered by JavaScript. AI crawlers will not see your content. Consider "
            f"server-side rendering.",
            word_count=word_count,
            script_count=script_count,
        )

    if word_count < 100:
        return warning(
            f"Page has only {word_count} words in initial HTML. If more content appears after "
            f"JavaScript loads, AI crawlers may miss it. Verify important content is server-rendered.",
            word_count=word_count,
        )

    return passed(f"Page has {word_count} words of server-rendered content.", word_count=word_count)


LLMS_TXT_MESSAGE = (
    "Create a /llms.txt file to help AI assistants understand your site. This file describes "
    "your content in a format optimized for language models."
)


@check(
    "missing_llms_txt",
    check_type=AI,
    priority=CRITICAL,
    description="Check if /llms.txt exists for AI crawlers",
    display_name="Missing llms.txt File",
    display_name_passed="llms.txt File",
    learn_more_url="https://llmstxt.org/",
    site_wide=True,
)
async def missing_llms_txt(context: CheckContext) -> CheckResult:
    try:
        async with http_client() as client:
            response = await client.head(f"{context.origin}/llms.txt")
    except httpx.HTTPError:
        return failed(LLMS_TXT_MESSAGE)

    if response.is_success:
        return passed("Found at /llms.txt")
    return failed(LLMS_TXT_MESSAGE)


@check(
    "missing_markdown",
    check_type=AI,
    priority=OPTIONAL,
    description="Markdown versions of pages improve AI crawler accessibility",
    display_name="Missing Markdown Alternatives",
    display_name_passed="Markdown Alternatives",
    learn_more_url="https://llmstxt.org/",
    site_wide=True,
)
async def missing_markdown(context: CheckContext) -> CheckResult:
    endpoints = []
    pages_with_markdown = []

    async with http_client() as client:
        for path in MARKDOWN_PATHS:
            try:
                response = await client.head(f"{context.origin}{path}")
            except httpx.HTTPError:
                continue
            if response.is_success:
                endpoints.append(path)

        for page in context.all_pages[:10]:
            markdown_url = page.url.rstrip("/") + ".md"
            try:
                response = await client.head(markdown_url)
            except httpx.HTTPError:
                continue
            content_type = response.headers.get("content-type", "")
            if response.is_success and any(t in content_type for t in MARKDOWN_CONTENT_TYPES):
                pages_with_markdown.append(page.url)

    found = endpoints + [f"{url} → .md" for url in pages_with_markdown]
    if not found:
        return failed(
            "No markdown alternatives found. Consider providing /llms-full.txt or .md versions "
            "of key pages to improve accessibility for AI crawlers and LLMs."
        )

    examples = ", ".join(found[:3]) + ("..." if len(found) > 3 else "")
    noun = "endpoint" if len(found) == 1 else "endpoints"
    return passed(f"Found {len(found)} markdown {noun}: {examples}", endpoints=found)


def _json_ld_items(context: CheckContext) -> list[dict]:
    items = []
    for script in context.soup().find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except (TypeError, ValueError):
            continue
        candidates = data if isinstance(data, list) else [data]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            graph = candidate.get("@graph")
            if isinstance(graph, list):
                items.extend(item for item in graph if isinstance(item, dict))
            else:
                items.append(candidate)
    return items


def _types_of(item: dict) -> set[str]:
    value = item.get("@type")
    if isinstance(value, list):
        return {str(v) for v in value}
    return {str(value)} if value else set()


@check(
    "missing_organization_schema",
    check_type=AI,
    priority=RECOMMENDED,
    description="Organization schema helps AI understand your business identity",
    display_name="Missing Organization Schema",
    display_name_passed="Organization Schema",
    learn_more_url="https://developers.google.com/search/docs/appearance/structured-data/organization",
    site_wide=True,
)
async def missing_organization_schema(context: CheckContext) -> CheckResult:
    organization = next(
        (item for item in _json_ld_items(context) if _types_of(item) & ORGANIZATION_TYPES),
        None,
    )

    if organization is None:
        suggestion = json.dumps(
            {
                "@context": "https://schema.org",
                "@type": "Organization",
                "name": "Your Company Name",
                "url": context.origin,
                "logo": f"{context.origin}/logo.png",
                "description": "Brief description of your business",
            },
            indent=2,
        )
        return failed(
            "No Organization schema found on homepage. Add JSON-LD structured data to help "
            "search engines and AI assistants understand your business identity, location, "
            "and contact information.",
            suggestion=f'<script type="application/ld+json">\n{suggestion}\n</script>',
        )

    name = organization.get("name") or "Unknown"
    missing_fields = [f for f in ("name", "url", "logo", "description") if not organization.get(f)]

    if missing_fields:
        return warning(
            f"Organization schema found but missing recommended fields: "
            f"{', '.join(missing_fields)}. Add these for better AI understanding.",
            missing_fields=missing_fields,
            organization_name=name,
        )

    return passed(
        f"Organization schema found with name \"{name}\". AI assistants can identify your business.",
        organization_name=name,
    )


@check(
    "missing_structured_data",
    check_type=AI,
    priority=CRITICAL,
    description="Check for JSON-LD structured data",
    display_name="Missing Structured Data",
    display_name_passed="Structured Data (JSON-LD)",
    learn_more_url="https://developers.google.com/search/docs/appearance/structured-data/intro-structured-data",
    site_wide=True,
)
async def missing_structured_data(context: CheckContext) -> CheckResult:
    if not context.soup().find_all("script", type="application/ld+json"):
        return failed(
            "Add JSON-LD structured data to help search engines and AI understand your content. "
            "Common types include Organization, Article, Product, and FAQ."
        )

    types = sorted({t for item in _json_ld_items(context) for t in _types_of(item)})
    if types:
        return passed(f"Found: {', '.join(types)}", types=types)
    return passed("JSON-LD structured data found")


def _parse_lastmod(value: str) -> datetime | None:
    value = value.strip()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return as_aware(parsed)


@check(
    "no_recent_updates",
    check_type=AI,
    priority=RECOMMENDED,
    description="Sites without recent updates may be deprioritized in search",
    display_name="No Recent Updates",
    display_name_passed="Content Freshness",
    learn_more_url="https://developers.google.com/search/docs/fundamentals/creating-helpful-content",
    site_wide=True,
)
async def no_recent_updates(context: CheckContext) -> CheckResult:
    now = datetime.now(timezone.utc)
    dates = [as_aware(page.last_modified) for page in context.all_pages if page.last_modified]

    try:
        async with http_client() as client:
            response = await client.get(f"{context.origin}/sitemap.xml")
        if response.is_success:
            for match in LASTMOD_PATTERN.finditer(response.text):
                parsed = _parse_lastmod(match.group(1))
                if parsed is not None:
                    dates.append(parsed)
    except httpx.HTTPError:
        pass

    if not dates:
        return warning(
            "Unable to determine content freshness. No Last-Modified headers or sitemap lastmod "
            "dates found. Consider adding timestamps to help search engines assess content relevance."
        )

    most_recent = max(dates)
    days_since_update = (now - most_recent).days

    if most_recent < now - timedelta(days=STALE_CONTENT_DAYS):
        return failed(
            f"No content updates in {days_since_update} days (threshold: {STALE_CONTENT_DAYS} "
            f"days). Fresh content signals relevance to search engines and AI systems. Consider "
            f"updating existing content or publishing new material.",
            days_since_update=days_since_update,
            last_update=most_recent.isoformat(),
        )

    return passed(
        f"Content updated {days_since_update} day{'' if days_since_update == 1 else 's'} ago",
        days_since_update=days_since_update,
        last_update=most_recent.isoformat(),
    )


@check(
    "slow_page_response",
    check_type=AI,
    priority=CRITICAL,
    description="AI crawlers timeout on slow pages (1-5 seconds)",
    display_name="Slow Page Response",
    display_name_passed="Fast Page Response",
    learn_more_url="https://developers.google.com/search/docs/crawling-indexing/large-site-managing-crawl-budget",
    site_wide=True,
)
async def slow_page_response(context: CheckContext) -> CheckResult:
    start = time.perf_counter()
    try:
        async with http_client(timeout=SLOW_RESPONSE_TIMEOUT_SECONDS) as client:
            await client.get(context.origin)
    except httpx.TimeoutException:
        return failed(
            f"Homepage took over {SLOW_RESPONSE_TIMEOUT_SECONDS} seconds to respond (timed out). "
            f"AI crawlers will skip your site. This is a critical performance issue."
        )
    except httpx.HTTPError as e:
        return failed(f"Could not measure response time: {e}")

    response_time_ms = round((time.perf_counter() - start) * 1000)
    seconds = f"{response_time_ms / 1000:.2f}"

    if response_time_ms <= 2000:
        return passed(
            f"Homepage responds in {seconds}s. AI crawlers can access your content quickly.",
            response_time_ms=response_time_ms,
        )

    if response_time_ms <= 5000:
        return warning(
            f"Homepage responds in {seconds}s. This is within limits but AI crawlers like GPTBot "
            f"prefer faster responses (<2s). Consider optimizing server response time.",
            response_time_ms=response_time_ms,
        )

    return failed(
        f"Homepage takes {seconds}s to respond. AI crawlers typically timeout at 5 seconds and "
        f"may skip your content. Optimize server response time, enable caching, or use a CDN.",
        response_time_ms=response_time_ms,
    )
