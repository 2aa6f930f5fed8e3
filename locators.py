"""Candidate locator lists for click/fill/extractText steps.

Search pages change their markup often, so each step tries a short, ordered
list of locators: the ones the planner wrote, then a couple of well-known
fallbacks picked from ``DEFAULT_RULES``. The list is bounded so a missing
element costs at most a few short waits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from models import StepKind

MAX_FALLBACKS = 2
MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class FallbackRule:
    """Fallback locators offered for steps of ``kinds`` whose locator mentions a keyword.

    An empty ``kinds`` makes the rule generic (any kind); an empty ``keywords``
    makes it apply to every locator of those kinds.
    """

    kinds: Tuple[str, ...]
    keywords: Tuple[str, ...]
    locators: Tuple[str, ...]

    def matches(self, locator: str, kind: str) -> bool:
        if self.kinds and kind not in self.kinds:
            return False
        if not self.keywords:
            return True
        normalized = _normalize(locator)
        return any(_normalize(word) in normalized for word in self.keywords)


DEFAULT_RULES: Tuple[FallbackRule, ...] = (
    FallbackRule(
        kinds=(StepKind.CLICK.value,),
        keywords=("submit", "search_button", "btnK", "search"),
        locators=('button[type="submit"]',),
    ),
    FallbackRule(
        kinds=(StepKind.CLICK.value,),
        keywords=("result",),
        locators=(".result__title a",),
    ),
    FallbackRule(
        kinds=(StepKind.FILL.value,),
        keywords=('input[name="q"]', "search"),
        locators=('input[type="text"]',),
    ),
    FallbackRule(
        kinds=(StepKind.EXTRACT_TEXT.value,),
        keywords=(),
        locators=(".result__snippet",),
    ),
)


def _normalize(text: str) -> str:
    return text.lower().replace("'", '"')


def split_alternatives(locator: str) -> List[str]:
    """Split a selector list on top-level commas.

    Commas inside quotes, brackets or parentheses (``:is(a, b)``,
    ``[title="a, b"]``) belong to a single selector.
    """
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    quote = ""
    for char in locator or "":
        if quote:
            current.append(char)
            if char == quote:
                quote = ""
            continue
        if char in ("'", '"'):
            quote = char
        elif char in "([":
            depth += 1
        elif char in ")]" and depth:
            depth -= 1
        elif char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())

    seen: set[str] = set()
    alternatives: List[str] = []
    for part in parts:
        if part and part not in seen:
            seen.add(part)
            alternatives.append(part)
    return alternatives


def fallback_locators(
    locator: str,
    kind: str,
    rules: Sequence[FallbackRule] = DEFAULT_RULES,
    max_fallbacks: int = MAX_FALLBACKS,
) -> List[str]:
    """Fallbacks for ``kind``: kind-specific rules first, generic rules after."""
    specific = [rule for rule in rules if rule.kinds]
    generic = [rule for rule in rules if not rule.kinds]
    found: List[str] = []
    for rule in specific + generic:
        if not rule.matches(locator, kind):
            continue
        for candidate in rule.locators:
            if candidate not in found:
                found.append(candidate)
    return found[:max_fallbacks]


def resolve(
    locator: str,
    kind: str,
    rules: Sequence[FallbackRule] = DEFAULT_RULES,
    max_fallbacks: int = MAX_FALLBACKS,
    max_attempts: int = MAX_ATTEMPTS,
) -> List[str]:
    """Ordered candidates for a step, never more than ``max_attempts`` long.

    Caller alternatives come first. When a rule offers a fallback, one slot is
    kept for it even if that drops trailing caller alternatives.
    """
    kind = kind.value if isinstance(kind, StepKind) else kind
    alternatives = split_alternatives(locator)
    extra = [f for f in fallback_locators(locator, kind, rules, max_fallbacks) if f not in alternatives]

    room = max(1, max_attempts - (1 if extra else 0))
    candidates = alternatives[:room]
    for fallback in extra:
        if len(candidates) >= max_attempts:
            break
        candidates.append(fallback)
    return candidates
