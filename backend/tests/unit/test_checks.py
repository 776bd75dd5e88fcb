"""
Unit tests for audit checks.

Tests:
- Registry contents and scoping
- Page checks (title, H1, canonical validation)
- Site-wide checks (broken links, duplicates, sitemap discovery)
- AI readiness heuristics
- Failure isolation in the check runner
"""
import httpx
import pytest
import respx

from selo.models.audit import CheckPriority, CheckStatus, CheckType
from selo.services.check_engine import run_check
from selo.services.checks import (
    CheckContext,
    CheckDefinition,
    PageSummary,
    get_check,
    page_checks,
    site_wide_checks,
)
from tests.fixtures.sample_pages import (
    CONTACT_HTML,
    HOME_HTML,
    SPA_SHELL_HTML,
    page_with_canonical,
)


async def run(name: str, context: CheckContext):
    return await run_check(get_check(name), context)


class TestRegistry:
    """Test the check registry."""

    def test_scopes(self):
        """Every check is either page-scoped or site-wide."""
        page_names = {c.name for c in page_checks()}
        site_names = {c.name for c in site_wide_checks()}

        assert "missing_title" in page_names
        assert "canonical_validation" in page_names
        assert "js_rendered_content" in page_names
        assert "broken_internal_links" in site_names
        assert "invalid_ssl_certificate" in site_names
        assert "ai_crawlers_blocked" in site_names
        assert not page_names & site_names
        assert len(page_names) == 15
        assert len(site_names) == 15

    def test_definitions_are_complete(self):
        """Each definition carries the display metadata the report layer needs."""
        for definition in page_checks() + site_wide_checks():
            assert definition.display_name
            assert definition.display_name_passed
            assert definition.description
            assert isinstance(definition.check_type, CheckType)
            assert isinstance(definition.priority, CheckPriority)


class TestPageChecks:
    """Test page-scoped checks."""

    @pytest.mark.asyncio
    async def test_missing_title(self):
        """A page without <title> fails."""
        result = await run("missing_title", CheckContext(url="https://example.com/contact", html=CONTACT_HTML))
        assert result.status == CheckStatus.FAILED

    @pytest.mark.asyncio
    async def test_title_present(self):
        """A page with a title passes."""
        result = await run("missing_title", CheckContext(url="https://example.com", html=HOME_HTML))
        assert result.status == CheckStatus.PASSED
        assert result.details["title"].startswith("Example Company")

    @pytest.mark.asyncio
    async def test_multiple_h1_is_warning(self):
        """Two H1 headings produce a warning."""
        html = "<html><body><h1>One</h1><h1>Two</h1></body></html>"
        result = await run("missing_h1", CheckContext(url="https://example.com", html=html))
        assert result.status == CheckStatus.WARNING
        assert result.details["count"] == 2

    @pytest.mark.asyncio
    async def test_missing_alt_text(self):
        """Images without an alt attribute fail."""
        html = '<html><body><img src="/a.jpg"><img src="/b.jpg" alt="B"></body></html>'
        result = await run("missing_alt_text", CheckContext(url="https://example.com", html=html))
        assert result.status == CheckStatus.FAILED


class TestCanonicalValidation:
    """Test canonical_validation."""

    @pytest.mark.asyncio
    async def test_no_canonical_passes(self):
        """Absence is left to missing_canonical."""
        result = await run("canonical_validation", CheckContext(url="https://example.com", html=HOME_HTML))
        assert result.status == CheckStatus.PASSED

    @pytest.mark.asyncio
    @respx.mock
    async def test_canonical_that_redirects_is_warning(self):
        """A canonical pointing at a 301 is a warning."""
        respx.head("https://example.com/old-page").mock(
            return_value=httpx.Response(301, headers={"Location": "https://example.com/new-page"})
        )

        context = CheckContext(
            url="https://example.com/page",
            html=page_with_canonical("https://example.com/old-page"),
        )
        result = await run("canonical_validation", context)

        assert result.status == CheckStatus.WARNING
        assert result.details["status"] == 301

    @pytest.mark.asyncio
    @respx.mock
    async def test_canonical_chain_fails(self):
        """A canonical whose target declares another canonical fails."""
        respx.head("https://example.com/b").mock(return_value=httpx.Response(200))
        respx.get("https://example.com/b").mock(
            return_value=httpx.Response(200, html=page_with_canonical("https://example.com/c"))
        )

        context = CheckContext(url="https://example.com/a", html=page_with_canonical("https://example.com/b"))
        result = await run("canonical_validation", context)

        assert result.status == CheckStatus.FAILED
        assert "chain" in result.details["message"].lower()
        assert result.details["target_canonical"] == "https://example.com/c"

    @pytest.mark.asyncio
    @respx.mock
    async def test_self_referencing_canonical_passes(self):
        """A canonical pointing at the page itself passes."""
        html = page_with_canonical("https://example.com/a")
        respx.head("https://example.com/a").mock(return_value=httpx.Response(200))
        respx.get("https://example.com/a").mock(return_value=httpx.Response(200, html=html))

        result = await run("canonical_validation", CheckContext(url="https://example.com/a", html=html))

        assert result.status == CheckStatus.PASSED

    @pytest.mark.asyncio
    @respx.mock
    async def test_broken_canonical_fails(self):
        """A canonical returning 404 fails."""
        respx.head("https://example.com/gone").mock(return_value=httpx.Response(404))

        context = CheckContext(url="https://example.com/a", html=page_with_canonical("https://example.com/gone"))
        result = await run("canonical_validation", context)

        assert result.status == CheckStatus.FAILED
        assert result.details["status"] == 404


class TestSiteWideChecks:
    """Test site-wide checks."""

    @pytest.mark.asyncio
    async def test_broken_internal_links(self):
        """4xx pages and fetch errors are broken links."""
        pages = [
            PageSummary(url="https://example.com", status_code=200),
            PageSummary(url="https://example.com/missing", status_code=404),
            PageSummary(url="https://example.com/timeout", status_code=0, fetch_error="timed out"),
        ]
        context = CheckContext(url="https://example.com", html=HOME_HTML, all_pages=pages)
        result = await run("broken_internal_links", context)

        assert result.status == CheckStatus.FAILED
        assert result.details["broken_count"] == 2
        assert result.details["by_status"]["404"] == ["https://example.com/missing"]

    @pytest.mark.asyncio
    async def test_duplicate_titles(self):
        """Pages sharing a title fail."""
        pages = [
            PageSummary(url="https://example.com/a", status_code=200, title="Same Title"),
            PageSummary(url="https://example.com/b", status_code=200, title="Same Title"),
            PageSummary(url="https://example.com/c", status_code=200, title="Different"),
        ]
        context = CheckContext(url="https://example.com", html=HOME_HTML, all_pages=pages)
        result = await run("duplicate_titles", context)

        assert result.status == CheckStatus.FAILED

    @pytest.mark.asyncio
    @respx.mock
    async def test_sitemap_declared_but_unreachable_is_warning(self):
        """A robots.txt sitemap that cannot be fetched is a warning."""
        respx.head("https://example.com/sitemap.xml").mock(return_value=httpx.Response(404))
        respx.head("https://example.com/sitemap_index.xml").mock(return_value=httpx.Response(404))
        respx.head("https://example.com/sitemap/sitemap.xml").mock(return_value=httpx.Response(404))
        respx.get("https://example.com/robots.txt").mock(
            return_value=httpx.Response(200, text="User-agent: *\nSitemap: https://cdn.example.com/sitemap.xml\n")
        )
        respx.head("https://cdn.example.com/sitemap.xml").mock(side_effect=httpx.ConnectError("refused"))

        result = await run("missing_sitemap", CheckContext(url="https://example.com", html=HOME_HTML))

        assert result.status == CheckStatus.WARNING
        assert "cdn.example.com" in result.details["message"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_sitemap_found(self):
        """A sitemap at the conventional path passes."""
        respx.head("https://example.com/sitemap.xml").mock(return_value=httpx.Response(200))
        respx.get("https://example.com/robots.txt").mock(return_value=httpx.Response(404))

        result = await run("missing_sitemap", CheckContext(url="https://example.com", html=HOME_HTML))

        assert result.status == CheckStatus.PASSED
        assert result.details["sitemap_url"] == "https://example.com/sitemap.xml"

    @pytest.mark.asyncio
    @respx.mock
    async def test_ai_crawlers_blocked(self):
        """robots.txt disallowing GPTBot fails."""
        respx.get("https://example.com/robots.txt").mock(
            return_value=httpx.Response(200, text="User-agent: GPTBot\nDisallow: /\n")
        )

        result = await run("ai_crawlers_blocked", CheckContext(url="https://example.com", html=HOME_HTML))

        assert result.status == CheckStatus.FAILED
        assert result.details["blocked"] == ["GPTBot"]


class TestAiReadiness:
    """Test AI readiness heuristics."""

    @pytest.mark.asyncio
    async def test_spa_shell_fails(self):
        """An empty SPA mount point fails js_rendered_content."""
        result = await run("js_rendered_content", CheckContext(url="https://example.com", html=SPA_SHELL_HTML))
        assert result.status == CheckStatus.FAILED
        assert result.details["is_spa"] is True

    @pytest.mark.asyncio
    async def test_organization_schema_in_graph(self):
        """Organization nested in @graph is found; missing fields downgrade to a warning."""
        html = """
        <html><head><script type="application/ld+json">
        {"@context": "https://schema.org", "@graph": [{"@type": "WebSite"}, {"@type": "Organization", "name": "Example"}]}
        </script></head><body></body></html>
        """
        result = await run("missing_organization_schema", CheckContext(url="https://example.com", html=html))
        assert result.status == CheckStatus.WARNING
        assert result.details["organization_name"] == "Example"
        assert "logo" in result.details["missing_fields"]


class TestRunCheck:
    """Test failure isolation."""

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_verdict(self):
        """A raising check is recorded as failed with the error."""

        async def explode(context):
            raise RuntimeError("boom")

        definition = CheckDefinition(
            name="exploding",
            check_type=CheckType.SEO,
            priority=CheckPriority.OPTIONAL,
            description="Raises",
            display_name="Exploding",
            display_name_passed="Exploding",
            run=explode,
        )

        result = await run_check(definition, CheckContext(url="https://example.com", html=""))

        assert result.status == CheckStatus.FAILED
        assert result.details == {"message": "Check could not be completed: boom", "error": "boom"}
