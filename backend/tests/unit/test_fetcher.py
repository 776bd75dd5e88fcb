"""
Unit tests for the page fetcher.

Tests:
- URL normalization and same-site link extraction
- Redirect handling and final URL recording
- Last-Modified parsing
- Certificate error detection and the relaxed-SSL retry
"""
import ssl
from datetime import datetime, timezone

import httpx
import pytest
import respx

from selo.services.fetcher import (
    Fetcher,
    extract_links,
    is_certificate_error,
    normalize_url,
    parse_last_modified,
)


class TestNormalizeUrl:
    """Test URL normalization."""

    def test_strips_fragment_and_trailing_slash(self):
        """Fragments and one trailing slash are dropped."""
        assert normalize_url("https://example.com/about/#team") == "https://example.com/about"

    def test_keeps_query(self):
        """Query strings distinguish pages."""
        assert normalize_url("https://example.com/search?q=oak") == "https://example.com/search?q=oak"


class TestExtractLinks:
    """Test link discovery."""

    def test_equivalent_anchors_collapse(self):
        """/about, /about/ and /about/#team are one URL."""
        html = """
        <a href="/about">A</a>
        <a href="/about/">B</a>
        <a href="/about/#team">C</a>
        """
        assert extract_links(html, "https://example.com") == {"https://example.com/about"}

    def test_skips_external_and_non_http(self):
        """Other hosts and mailto/tel/javascript links are ignored."""
        html = """
        <a href="https://other.com/page">x</a>
        <a href="mailto:hi@example.com">x</a>
        <a href="tel:+15555555">x</a>
        <a href="javascript:void(0)">x</a>
        <a href="#top">x</a>
        <a href="/ok">x</a>
        """
        assert extract_links(html, "https://example.com") == {"https://example.com/ok"}

    def test_www_variant_counts_as_same_site(self):
        """www and bare hosts are treated as the same site."""
        html = '<a href="https://www.example.com/shop">Shop</a>'
        assert extract_links(html, "https://example.com") == {"https://www.example.com/shop"}

    def test_relative_links_resolve_against_final_url(self):
        """After a redirect, relative links resolve against where we landed."""
        html = '<a href="team">Team</a>'
        links = extract_links(html, "https://example.com/about", "https://example.com/company/")
        assert links == {"https://example.com/company/team"}

    def test_drops_unrequestable_links(self):
        """Same-site hrefs httpx cannot request are not queued."""
        html = """
        <a href="/about">About</a>
        <a href="https://example.com:abc/x">Bad port</a>
        """
        assert extract_links(html, "https://example.com") == {"https://example.com/about"}


class TestParseLastModified:
    """Test Last-Modified parsing."""

    def test_rfc1123(self):
        """A valid header becomes an aware datetime."""
        parsed = parse_last_modified("Wed, 21 Oct 2015 07:28:00 GMT")
        assert parsed == datetime(2015, 10, 21, 7, 28, tzinfo=timezone.utc)

    def test_garbage_is_none(self):
        """Unparsable values are ignored."""
        assert parse_last_modified("yesterday-ish") is None
        assert parse_last_modified(None) is None


class TestCertificateErrors:
    """Test certificate error classification."""

    def test_message_markers(self):
        """TLS vocabulary in the message marks a certificate error."""
        assert is_certificate_error(httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed"))
        assert is_certificate_error(Exception("UNABLE_TO_VERIFY_LEAF_SIGNATURE"))
        assert not is_certificate_error(httpx.ConnectError("Connection refused"))

    def test_ssl_error_in_cause_chain(self):
        """An ssl.SSLError anywhere in the cause chain counts."""
        try:
            try:
                raise ssl.SSLError("handshake")
            except ssl.SSLError as inner:
                raise httpx.ConnectError("connect failed") from inner
        except httpx.ConnectError as outer:
            assert is_certificate_error(outer)


class TestFetcher:
    """Test Fetcher.fetch."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_follows_redirects(self):
        """Redirects are followed and the final URL recorded."""
        respx.get("https://example.com/old").mock(
            return_value=httpx.Response(301, headers={"Location": "https://example.com/new"})
        )
        respx.get("https://example.com/new").mock(
            return_value=httpx.Response(
                200,
                html="<html><title>New</title></html>",
                headers={"Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT"},
            )
        )

        result = await Fetcher().fetch("https://example.com/old")

        assert result.ok
        assert result.status_code == 200
        assert result.final_url == "https://example.com/new"
        assert "<title>New</title>" in result.html
        assert result.last_modified.year == 2015
        assert result.used_relaxed_ssl is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error_is_reported_not_raised(self):
        """Non-certificate failures return an error with status 0."""
        respx.get("https://down.example.com/").mock(side_effect=httpx.ConnectError("Connection refused"))

        result = await Fetcher().fetch("https://down.example.com/")

        assert not result.ok
        assert result.status_code == 0
        assert "Connection refused" in result.error

    @pytest.mark.asyncio
    @respx.mock
    async def test_certificate_error_retries_relaxed(self):
        """A certificate failure is retried once without verification."""
        respx.get("https://badcert.example.com/").mock(side_effect=[
            httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] unable to get local issuer certificate"),
            httpx.Response(302, headers={"Location": "/home"}),
        ])
        respx.get("https://badcert.example.com/home").mock(
            return_value=httpx.Response(200, html="<html><title>Home</title></html>")
        )

        result = await Fetcher().fetch("https://badcert.example.com/")

        assert result.ok
        assert result.used_relaxed_ssl is True
        assert result.final_url == "https://badcert.example.com/home"

    @pytest.mark.asyncio
    @respx.mock
    async def test_relaxed_redirect_limit(self):
        """Manual redirect following stops after max_redirects."""
        respx.get("https://loop.example.com/").mock(
            return_value=httpx.Response(302, headers={"Location": "https://loop.example.com/"})
        )

        result = await Fetcher(max_redirects=3).fetch("https://loop.example.com/", force_relaxed_ssl=True)

        assert not result.ok
        assert "redirects" in result.error

    @pytest.mark.asyncio
    @respx.mock
    async def test_binary_content_has_no_html(self):
        """Non-textual bodies are not decoded."""
        respx.get("https://example.com/file.pdf").mock(
            return_value=httpx.Response(200, content=b"%PDF-1.4", headers={"Content-Type": "application/pdf"})
        )

        result = await Fetcher().fetch("https://example.com/file.pdf")

        assert result.ok
        assert result.html == ""

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_url_is_reported_not_raised(self):
        """A URL httpx rejects becomes a per-URL error."""
        result = await Fetcher().fetch("https://example.com:abc/x")

        assert not result.ok
        assert result.status_code == 0
        assert "port" in result.error.lower()

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_url_in_relaxed_mode(self):
        """The relaxed path reports malformed URLs the same way."""
        result = await Fetcher().fetch("https://example.com:abc/x", force_relaxed_ssl=True)

        assert not result.ok
        assert result.used_relaxed_ssl is True
