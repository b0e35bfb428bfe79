"""Event filter rules."""

import re
import unicodedata
from typing import Callable

from calmirror.models import FilterRule, KeywordsRule, RegexRule, SourceEvent

_WHITESPACE = re.compile(r"\s+")


class InvalidFilterRuleError(ValueError):
    """Raised when a stored rule cannot be parsed or compiled."""


def normalize_text(value: str) -> str:
    """
    Normalize text for keyword comparison.

    Lowercases, strips diacritics (so "Optimización" == "optimizacion")
    and collapses runs of whitespace into a single space.
    """
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE.sub(" ", stripped.casefold()).strip()


def parse_rule(kind: str, pattern: str) -> FilterRule:
    """Build a filter rule from its stored (kind, raw pattern) pair."""
    if kind == "keywords":
        keywords = [normalize_text(part) for part in (pattern or "").split(",")]
        return KeywordsRule(keywords=[k for k in keywords if k])
    if kind == "regex":
        return RegexRule(pattern=pattern or "")
    raise InvalidFilterRuleError(f"Unknown filter kind: {kind!r}")


def searchable_text(event: SourceEvent) -> str:
    return " ".join((event.summary, event.description, event.location))


def compile_matcher(rule: FilterRule) -> Callable[[SourceEvent], bool]:
    """Compile a rule once per run into a predicate over events."""
    if isinstance(rule, RegexRule):
        try:
            regex = re.compile(rule.pattern, re.IGNORECASE)
        except re.error as e:
            raise InvalidFilterRuleError(f"Invalid regex {rule.pattern!r}: {e}") from e

        def _match_regex(event: SourceEvent) -> bool:
            return any(
                regex.search(field)
                for field in (event.summary, event.description, event.location)
            )

        return _match_regex

    if isinstance(rule, KeywordsRule):
        keywords = tuple(rule.keywords)

        def _match_keywords(event: SourceEvent) -> bool:
            text = normalize_text(searchable_text(event))
            return any(keyword in text for keyword in keywords)

        return _match_keywords

    raise InvalidFilterRuleError(f"Unsupported rule type: {type(rule).__name__}")


def matches(event: SourceEvent, rule: FilterRule) -> bool:
    """Check a single event against a rule."""
    return compile_matcher(rule)(event)
