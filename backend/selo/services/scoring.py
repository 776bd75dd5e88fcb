"""
Audit scoring.

Each category score is a priority-weighted pass rate over that category's
checks: a pass earns the full weight, a warning half, a failure nothing.
A category without checks scores 100. The overall score is the rounded
mean of the three category scores.
"""

from collections.abc import Iterable
from dataclasses import dataclass, asdict
from decimal import ROUND_HALF_UP, Decimal

from selo.models.audit import CheckPriority, CheckStatus, CheckType

PRIORITY_WEIGHTS = {
    CheckPriority.CRITICAL: 3,
    CheckPriority.RECOMMENDED: 2,
    CheckPriority.OPTIONAL: 1,
}

STATUS_CREDIT = {
    CheckStatus.PASSED: Decimal("1"),
    CheckStatus.WARNING: Decimal("0.5"),
    CheckStatus.FAILED: Decimal("0"),
}


@dataclass
class AuditScores:
    overall_score: int
    seo_score: int
    ai_readiness_score: int
    technical_score: int
    failed_count: int
    warning_count: int
    passed_count: int

    def to_dict(self) -> dict:
        return asdict(self)


def _round(value: Decimal) -> int:
    # Half-up rounding, so 62.5 scores 63 rather than banker's 62
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score_category(checks: Iterable, check_type: CheckType) -> int:
    """Weighted pass rate for one category. Anything with check_type, priority and status works."""
    total = Decimal(0)
    earned = Decimal(0)

    for item in checks:
        if CheckType(item.check_type) != check_type:
            continue
        weight = PRIORITY_WEIGHTS[CheckPriority(item.priority)]
        total += weight
        earned += weight * STATUS_CREDIT[CheckStatus(item.status)]

    if total == 0:
        return 100

    return _round(earned / total * 100)


def calculate_scores(checks: Iterable) -> AuditScores:
    checks = list(checks)

    seo = score_category(checks, CheckType.SEO)
    ai_readiness = score_category(checks, CheckType.AI_READINESS)
    technical = score_category(checks, CheckType.TECHNICAL)

    statuses = [CheckStatus(item.status) for item in checks]

    return AuditScores(
        overall_score=_round(Decimal(seo + ai_readiness + technical) / 3),
        seo_score=seo,
        ai_readiness_score=ai_readiness,
        technical_score=technical,
        failed_count=statuses.count(CheckStatus.FAILED),
        warning_count=statuses.count(CheckStatus.WARNING),
        passed_count=statuses.count(CheckStatus.PASSED),
    )
