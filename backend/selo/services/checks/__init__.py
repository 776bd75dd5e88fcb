"""
Registered audit checks.

Importing this package registers every check module; the engine reads the
definitions through `page_checks()` and `site_wide_checks()`.
"""
from selo.services.checks import ai_readiness, seo, technical  # noqa: F401
from selo.services.checks.base import (
    REGISTRY,
    CheckContext,
    CheckDefinition,
    CheckResult,
    PageSummary,
)


def all_checks() -> list[CheckDefinition]:
    return list(REGISTRY.values())


def page_checks() -> list[CheckDefinition]:
    return [definition for definition in REGISTRY.values() if not definition.is_site_wide]


def site_wide_checks() -> list[CheckDefinition]:
    return [definition for definition in REGISTRY.values() if definition.is_site_wide]


def get_check(name: str) -> CheckDefinition | None:
    return REGISTRY.get(name)


__all__ = [
    "CheckContext",
    "CheckDefinition",
    "CheckResult",
    "PageSummary",
    "all_checks",
    "get_check",
    "page_checks",
    "site_wide_checks",
]
