"""Keyword routing: pick the backend best suited to a task description."""

import re
from collections.abc import Iterable

from llm_manager.core.backends import BACKENDS, Backend


def _keywords(alternatives: str) -> re.Pattern:
    return re.compile(rf"\b(?:{alternatives})", re.IGNORECASE)


# Decision list, evaluated top to bottom. The first pattern that matches and
# whose backend is installed wins; there is no scoring.
# Keywords are the foreground runner's tables (a superset of the daemon's).
# Each keyword must start a word, so "port" skips "report" and "icon" skips
# "silicon", while inflections such as "refactoring" still match.
ROUTES: tuple[tuple[re.Pattern, str], ...] = (
    (
        _keywords(
            r"generate image|create image|make image|draw|image of|picture of|logo|icon"
            r"|illustration|graphic|video|animation|clip|quick|fast|simple"
        ),
        "gemini",
    ),
    (
        _keywords(
            r"refactor|redesign|architect|restructure|complex|tricky|difficult|challenging"
            r"|analyze|debug|investigate|diagnose|review|code review|pr review|pull request"
            r"|screenshot|wireframe|mockup|ui design|from image|algorithm|optimize"
            r"|performance|security|vulnerability|audit|multi-step|multi-file|across files"
        ),
        "codex",
    ),
    (
        _keywords(
            r"entire|whole|all files|codebase|full project|large|massive|huge|extensive"
            r"|migrate|convert|port|understand codebase|explain architecture"
            r"|summarize project|thorough|comprehensive|free|budget|cost-effective"
        ),
        "qwen",
    ),
    (
        _keywords(
            r"plan|orchestrate|coordinate|multi-step|breakdown|strategy|design|decide"
            r"|evaluate|compare|trade-off|nuanced|architect|lead"
        ),
        "claude",
    ),
)


def classify(description: str, available: Iterable[Backend]) -> Backend | None:
    """Return the primary backend for a description, or None if none is available."""
    installed = {b.name: b for b in available}
    if not installed:
        return None
    for pattern, name in ROUTES:
        if name in installed and pattern.search(description):
            return installed[name]
    return _in_registry_order(installed.values())[0]


def rank(
    description: str,
    available: Iterable[Backend],
    preferred: str | None = None,
) -> list[Backend]:
    """Primary backend first, then every other available backend in registry order.

    ``preferred`` pins the primary when that backend is installed.
    """
    available = _in_registry_order(available)
    if not available:
        return []

    primary = None
    if preferred:
        primary = next((b for b in available if b.name == preferred), None)
    if primary is None:
        primary = classify(description, available)

    return [primary] + [b for b in available if b.name != primary.name]


def _in_registry_order(backends: Iterable[Backend]) -> list[Backend]:
    names = {b.name for b in backends}
    return [b for b in BACKENDS if b.name in names]
