"""
Dependency Reference Parser.

Extracts blocker references from free-text task descriptions. A reference is
a keyword followed by a bracketed task id:

    blocked by [a1b2c3]
    depends on: [a1b2c3]
    after [a1b2c3]
    requires [a1b2c3]

Matching is case-insensitive. Plain `#task-title` mentions are not parsed.
"""

import re

DEPENDENCY_PATTERNS = [
    re.compile(r"\bblocked\s+by[:\s]+\[([A-Za-z0-9_-]+)\]", re.IGNORECASE),
    re.compile(r"\bdepends\s+on[:\s]+\[([A-Za-z0-9_-]+)\]", re.IGNORECASE),
    re.compile(r"\bafter[:\s]+\[([A-Za-z0-9_-]+)\]", re.IGNORECASE),
    re.compile(r"\brequires[:\s]+\[([A-Za-z0-9_-]+)\]", re.IGNORECASE),
]


def parse_dependencies(text: str | None) -> list[str]:
    """
    Return the distinct task ids a description names as blockers.

    Ids keep first-seen order, pattern by pattern.

    Args:
        text: Task description (may be None or empty).

    Returns:
        List of referenced ids, without duplicates.
    """
    if not text:
        return []

    deps: dict[str, None] = {}
    for pattern in DEPENDENCY_PATTERNS:
        for match in pattern.finditer(text):
            deps.setdefault(match.group(1), None)
    return list(deps)
