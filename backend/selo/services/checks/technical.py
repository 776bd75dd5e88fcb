"""
Technical checks: TLS certificate health, mobile viewport and mixed content.
"""

import asyncio
import re
import socket
import ssl
from collections import Counter
from datetime import datetime, timezone
from urllib.parse import urlparse

from selo.models.audit import CheckPriority, CheckType
from selo.services.checks.base import (
    CheckContext,
    CheckResult,
    check,
    failed,
    meta_content,
    passed,
    warning,
)

TECHNICAL = CheckType.TECHNICAL
CRITICAL = CheckPriority.CRITICAL
RECOMMENDED = CheckPriority.RECOMMENDED

CERT_EXPIRY_WARNING_DAYS = 30
TLS_TIMEOUT_SECONDS = 10
# OpenSSL X509_V_ERR_* codes
CERT_EXPIRED_CODE = 10
SELF_SIGNED_CODES = {18, 19}

MIXED_CONTENT_SOURCES = (
    ("img", "src", "image"),
    ("script", "src", "script"),
    ("link", "href", "stylesheet"),
    ("iframe", "src", "iframe"),
    ("video", "src", "video"),
    ("audio", "src", "audio"),
    ("source", "src", "media source"),
    ("object", "data", "object"),
    ("embed", "src", "embed"),
)
INLINE_STYLE_HTTP_URL = re.compile(r"url\s*\(\s*['\"]?(http://[^'\")]+)['\"]?\s*\)", re.IGNORECASE)


def get_certificate(hostname: str, port: int = 443) -> dict:
    """Open a verified TLS connection and return the peer certificate.

    Raises ssl.SSLCertVerificationError when the chain does not verify and
    OSError for connection problems.
    """
    context = ssl.create_default_context()
    with socket.create_connection((hostname, port), timeout=TLS_TIMEOUT_SECONDS) as sock:
        with context.wrap_socket(sock, server_hostname=hostname) as ssock:
            return ssock.getpeercert()


def _issuer_name(cert: dict) -> str:
    issuer = dict(x[0] for x in cert.get("issuer", ()))
    return issuer.get("organizationName") or issuer.get("commonName") or "Unknown"


@check(
    "invalid_ssl_certificate",
    check_type=TECHNICAL,
    priority=CRITICAL,
    description="SSL certificate is invalid, expired, or has issues",
    display_name="Invalid SSL Certificate",
    display_name_passed="Valid SSL Certificate",
    learn_more_url="https://developers.google.com/search/docs/fundamentals/security",
    site_wide=True,
)
async def invalid_ssl_certificate(context: CheckContext) -> CheckResult:
    parsed = urlparse(context.url)
    if parsed.scheme != "https":
        return passed("Site uses HTTP, SSL check not applicable")

    try:
        cert = await asyncio.to_thread(get_certificate, parsed.hostname, parsed.port or 443)
    except ssl.SSLCertVerificationError as e:
        if e.verify_code == CERT_EXPIRED_CODE:
            return failed(
                "SSL certificate has expired. Visitors will see security warnings and browsers "
                "may block access to your site.",
                error=e.verify_message,
            )
        if e.verify_code in SELF_SIGNED_CODES:
            return failed(
                "SSL certificate is self-signed. Browsers will show security warnings. Use a "
                "certificate from a trusted Certificate Authority (e.g., Let's Encrypt).",
                self_signed=True,
                error=e.verify_message,
            )
        return failed(
            f"SSL certificate validation failed: {e.verify_message or e}. This may cause "
            f"browser warnings or connection failures.",
            error=e.verify_message or str(e),
        )
    except (OSError, ValueError) as e:
        return failed(f"Unable to verify SSL certificate: {e}", error=str(e))

    issuer = _issuer_name(cert)
    not_after = cert.get("notAfter")
    if not not_after:
        return passed("SSL certificate is valid", issuer=issuer)

    expires_on = datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)
    days_until_expiry = (expires_on - datetime.now(timezone.utc)).days

    if days_until_expiry <= CERT_EXPIRY_WARNING_DAYS:
        return warning(
            f"SSL certificate expires in {days_until_expiry} days ({expires_on.date()}). "
            f"Renew soon to avoid security warnings.",
            days_until_expiry=days_until_expiry,
            expires_on=expires_on.isoformat(),
            issuer=issuer,
        )

    return passed(
        f"SSL certificate is valid and expires in {days_until_expiry} days",
        issuer=issuer,
        expires_on=expires_on.isoformat(),
        days_until_expiry=days_until_expiry,
    )


@check(
    "missing_viewport",
    check_type=TECHNICAL,
    priority=RECOMMENDED,
    description="Pages without viewport meta tag for mobile-friendliness",
    display_name="Missing Viewport Meta Tag",
    display_name_passed="Viewport Meta Tag",
    learn_more_url=(
        "https://developers.google.com/search/docs/crawling-indexing/mobile/"
        "mobile-sites-mobile-first-indexing#viewport"
    ),
)
async def missing_viewport(context: CheckContext) -> CheckResult:
    viewport = meta_content(context.soup(), "viewport")

    if not viewport:
        return warning(
            "Add <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\"> to the "
            "<head> for proper mobile display. Without this, your site may not render correctly "
            "on mobile devices."
        )

    return passed(viewport)


@check(
    "mixed_content",
    check_type=TECHNICAL,
    priority=RECOMMENDED,
    description="HTTP resources on HTTPS pages cause security warnings",
    display_name="Mixed Content",
    display_name_passed="Secure Resources",
    learn_more_url="https://web.dev/articles/what-is-mixed-content",
)
async def mixed_content(context: CheckContext) -> CheckResult:
    if urlparse(context.url).scheme != "https":
        return passed("Page is served over HTTP (mixed content check not applicable)")

    soup = context.soup()
    insecure = []

    for tag_name, attr, resource_type in MIXED_CONTENT_SOURCES:
        for tag in soup.find_all(tag_name, attrs={attr: True}):
            if tag[attr].startswith("http://"):
                insecure.append({"type": resource_type, "url": tag[attr]})

    for tag in soup.find_all(style=True):
        for match in INLINE_STYLE_HTTP_URL.finditer(tag["style"]):
            insecure.append({"type": "inline style", "url": match.group(1)})

    if insecure:
        counts = Counter(resource["type"] for resource in insecure)
        summary = ", ".join(
            f"{count} {resource_type}{'' if count == 1 else 's'}"
            for resource_type, count in counts.items()
        )
        noun = "resource" if len(insecure) == 1 else "resources"
        return failed(
            f"{len(insecure)} insecure HTTP {noun} on HTTPS page ({summary}). Update URLs to "
            f"HTTPS to prevent browser warnings and blocked content.",
            count=len(insecure),
            resources=insecure[:5],
        )

    return passed("All resources loaded securely over HTTPS")
