"""
Executive summary for completed audits, written by the configured LLM.
"""

import logging

from selo.integrations.llm import LLMClient
from selo.models.audit import CheckPriority, CheckStatus, CheckType, SiteAuditCheck
from selo.services.scoring import AuditScores

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You write executive summaries of website SEO and AI-readiness audits for "
    "non-technical business owners."
)

WRITING_GUIDELINES = """Write a 3-4 paragraph executive summary following these guidelines:

Paragraph 1 - Overall Assessment:
- Interpret the score (Poor: <50, Needs Work: 50-70, Good: 70-85, Excellent: 85+)
- Mention pages analyzed
- Highlight the site's primary strengths based on passed checks

Paragraph 2 - Priority Issues:
- Focus on the top 3 critical issues
- Explain why each issue matters in business terms
- Be specific about what's wrong

Paragraph 3 - Quick Wins:
- Identify 2-3 easy fixes from the recommended/warning list
- Estimate the effort (e.g., "10-15 minutes per page")

Paragraph 4 - Next Steps:
- Recommend the order of fixes
- Mention positive findings to balance the report

Tone: Professional but accessible. Avoid jargon.
Length: 200-300 words total.
Format: Plain text only, no markdown."""


def score_interpretation(score: int) -> str:
    if score >= 85:
        return "Excellent"
    if score >= 70:
        return "Good"
    if score >= 50:
        return "Needs Work"
    return "Poor"


def _format_check(check: SiteAuditCheck) -> str:
    name = check.display_name or check.check_name.replace("_", " ")
    message = (check.details or {}).get("message", "")
    return f"- {name}: {message}"


def _format_list(checks: list[SiteAuditCheck], limit: int) -> str:
    if not checks:
        return "None"
    return "\n".join(_format_check(c) for c in checks[:limit])


def build_summary_prompt(
    url: str,
    pages_crawled: int,
    scores: AuditScores,
    checks: list[SiteAuditCheck],
) -> str:
    critical = [c for c in checks if c.priority == CheckPriority.CRITICAL and c.status == CheckStatus.FAILED]
    recommended = [c for c in checks if c.priority == CheckPriority.RECOMMENDED and c.status == CheckStatus.FAILED]
    warnings = [c for c in checks if c.status == CheckStatus.WARNING]
    passed = [c for c in checks if c.status == CheckStatus.PASSED]

    def passed_count(check_type: CheckType) -> int:
        return sum(1 for c in passed if c.check_type == check_type)

    return f"""You are writing an executive summary for a website SEO and AI-readiness audit report.

## Site Information
- URL: {url}
- Pages Analyzed: {pages_crawled}
- Overall Score: {scores.overall_score}/100 ({score_interpretation(scores.overall_score)})

## Category Scores
- SEO Score: {scores.seo_score}/100 ({score_interpretation(scores.seo_score)})
- AI-Readiness Score: {scores.ai_readiness_score}/100 ({score_interpretation(scores.ai_readiness_score)})
- Technical Score: {scores.technical_score}/100 ({score_interpretation(scores.technical_score)})

## Critical Issues ({len(critical)} found)
{_format_list(critical, 5)}

## Recommended Fixes ({len(recommended)} found)
{_format_list(recommended, 5)}

## Warnings ({len(warnings)} found)
{_format_list(warnings, 3)}

## Passed Checks
- SEO: {passed_count(CheckType.SEO)} passed
- AI-Readiness: {passed_count(CheckType.AI_READINESS)} passed
- Technical: {passed_count(CheckType.TECHNICAL)} passed

---

{WRITING_GUIDELINES}"""


async def generate_executive_summary(
    url: str,
    pages_crawled: int,
    scores: AuditScores,
    checks: list[SiteAuditCheck],
    client: LLMClient | None = None,
) -> str | None:
    """Ask the LLM for a summary. Returns None on any failure; the audit still completes."""
    prompt = build_summary_prompt(url, pages_crawled, scores, checks)
    llm = client or LLMClient()

    try:
        completion = await llm.complete(SYSTEM_PROMPT, prompt)
        return completion.text.strip() or None
    except Exception as e:
        logger.error(f"Executive summary generation failed for {url}: {e}")
        return None
    finally:
        if client is None:
            await llm.close()
