# ruleloom:domain=matcher
"""Rule matching: evaluate the triggers of in-scope rules against one artifact."""

from __future__ import annotations

import bisect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ruleloom.engine.catalog import (
    AbsentTrigger,
    PairTrigger,
    PatternTrigger,
    Severity,
    SignalTrigger,
)
from ruleloom.engine.signals import Span, group_signals

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping
    from collections.abc import Set as AbstractSet

    import regex

    from ruleloom.engine.catalog import Catalog, Rule
    from ruleloom.engine.signals import Signal

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RULE_CATEGORY = "rule"
ENGINE_CATEGORY = "engine"

EXTRACTION_FAILED = "engine/extraction-failed"
RULE_TIMEOUT = "engine/rule-timeout"
INTERNAL_CONSISTENCY = "engine/internal-consistency"

ENGINE_SEVERITIES: dict[str, Severity] = {
    EXTRACTION_FAILED: Severity.HIGH,
    RULE_TIMEOUT: Severity.MEDIUM,
    INTERNAL_CONSISTENCY: Severity.HIGH,
}

_EXCERPT_LIMIT = 80


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RuleTimeout(Exception):  # noqa: N818
    """Raised when a rule's evaluation exceeds its budget."""

    def __init__(self, rule_id: str, budget_ms: int) -> None:
        self.rule_id = rule_id
        self.budget_ms = budget_ms
        super().__init__(f"rule '{rule_id}' exceeded its {budget_ms}ms evaluation budget")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Match:
    """A rule firing at one location, before conflict resolution."""

    rule_id: str
    severity: Severity  # copied from the rule at match time
    span: Span
    line: int  # 1-based
    column: int  # 1-based
    message: str
    ordinal: int  # owning rule's catalog position, -1 for engine matches
    category: str = RULE_CATEGORY


def engine_match(rule_id: str, message: str) -> Match:
    """Build a match in the reserved ``engine`` category."""
    return Match(
        rule_id=rule_id,
        severity=ENGINE_SEVERITIES[rule_id],
        span=Span(0, 0),
        line=1,
        column=1,
        message=message,
        ordinal=-1,
        category=ENGINE_CATEGORY,
    )


class LineIndex:
    """Maps character offsets to 1-based line/column pairs."""

    def __init__(self, text: str) -> None:
        self._starts = [0]
        self._starts.extend(i + 1 for i, ch in enumerate(text) if ch == "\n")

    def locate(self, offset: int) -> tuple[int, int]:
        line_idx = bisect.bisect_right(self._starts, offset) - 1
        return line_idx + 1, offset - self._starts[line_idx] + 1


class _TemplateValues(dict[str, object]):
    """Leaves unknown placeholders untouched when rendering messages."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class _Budget:
    """Monotonic deadline for a single rule evaluation."""

    __slots__ = ("_budget_ms", "_deadline", "_rule_id")

    def __init__(self, rule_id: str, budget_ms: int | None) -> None:
        self._rule_id = rule_id
        self._budget_ms = budget_ms
        self._deadline = None if budget_ms is None else time.monotonic() + budget_ms / 1000

    def check(self) -> None:
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise self.expired()

    def remaining(self) -> float | None:
        """Seconds left, passed to the regex engine as its match timeout."""
        if self._deadline is None:
            return None
        left = self._deadline - time.monotonic()
        if left <= 0:
            raise self.expired()
        return left

    def expired(self) -> RuleTimeout:
        return RuleTimeout(self._rule_id, self._budget_ms or 0)


# ---------------------------------------------------------------------------
# Trigger evaluation
# ---------------------------------------------------------------------------

_Firing = tuple[Span, dict[str, object]]


def _excerpt(text: str) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) > _EXCERPT_LIMIT:
        return collapsed[: _EXCERPT_LIMIT - 3] + "..."
    return collapsed


def _match_values(m: regex.Match[str]) -> dict[str, object]:
    values: dict[str, object] = {"match": _excerpt(m.group(0))}
    for name, value in m.groupdict().items():
        if value is not None:
            values[name] = _excerpt(value)
    return values


def _signal_values(text: str, signal: Signal) -> dict[str, object]:
    return {
        "match": _excerpt(text[signal.span.start : signal.span.end]),
        "token": signal.token,
    }


def _fire_pattern(trigger: PatternTrigger, text: str, budget: _Budget) -> Iterator[_Firing]:
    for m in trigger.pattern.finditer(text, timeout=budget.remaining()):
        budget.check()
        yield Span(m.start(), m.end()), _match_values(m)


def _fire_absent(
    trigger: AbsentTrigger,
    text: str,
    signals: Mapping[str, list[Signal]],
    budget: _Budget,
) -> Iterator[_Firing]:
    if trigger.pattern.search(text, timeout=budget.remaining()) is not None:
        return
    if trigger.anchor is None:
        yield Span(0, 0), {"match": ""}
        return
    for signal in signals.get(trigger.anchor, ()):
        budget.check()
        yield signal.span, _signal_values(text, signal)


def _fire_pair(trigger: PairTrigger, text: str, budget: _Budget) -> Iterator[_Firing]:
    for m in trigger.open_pattern.finditer(text, timeout=budget.remaining()):
        budget.check()
        end = len(text) if trigger.window is None else min(len(text), m.end() + trigger.window)
        if trigger.close_pattern.search(text, m.end(), end, timeout=budget.remaining()) is None:
            yield Span(m.start(), m.end()), _match_values(m)


def _fire_signal(
    trigger: SignalTrigger,
    text: str,
    signals: Mapping[str, list[Signal]],
    budget: _Budget,
) -> Iterator[_Firing]:
    for signal in signals.get(trigger.kind, ()):
        budget.check()
        if trigger.token is not None and (
            trigger.token.search(signal.token, timeout=budget.remaining()) is None
        ):
            continue
        yield signal.span, _signal_values(text, signal)


def _firings(
    rule: Rule,
    text: str,
    signals: Mapping[str, list[Signal]],
    budget: _Budget,
) -> Iterator[_Firing]:
    trigger = rule.trigger
    if isinstance(trigger, PatternTrigger):
        return _fire_pattern(trigger, text, budget)
    if isinstance(trigger, AbsentTrigger):
        return _fire_absent(trigger, text, signals, budget)
    if isinstance(trigger, PairTrigger):
        return _fire_pair(trigger, text, budget)
    return _fire_signal(trigger, text, signals, budget)


def render_message(template: str, values: Mapping[str, object]) -> str:
    """Substitute *values* into a rule message template."""
    return template.format_map(_TemplateValues(values))


def evaluate_rule(
    rule: Rule,
    artifact_text: str,
    signals: Mapping[str, list[Signal]],
    *,
    line_index: LineIndex | None = None,
    budget_ms: int | None = None,
) -> list[Match]:
    """Evaluate one rule and return a match per firing.

    *signals* is grouped by kind (see :func:`group_signals`).  Raises
    ``RuleTimeout`` when *budget_ms* is exceeded, whether or not the rule
    fired; no partial result is returned in that case.  The remaining budget
    is passed to every regex search, so a runaway pattern is interrupted.
    """
    lines = line_index or LineIndex(artifact_text)
    budget = _Budget(rule.id, budget_ms)
    matches: list[Match] = []
    try:
        for span, values in _firings(rule, artifact_text, signals, budget):
            line, column = lines.locate(span.start)
            values = {**values, "line": line, "column": column, "rule": rule.id}
            matches.append(
                Match(
                    rule_id=rule.id,
                    severity=rule.severity,
                    span=span,
                    line=line,
                    column=column,
                    message=render_message(rule.message, values),
                    ordinal=rule.ordinal,
                )
            )
    except TimeoutError as exc:
        raise budget.expired() from exc
    budget.check()
    return matches


def rules_in_scope(catalog: Catalog, active_bundles: AbstractSet[str]) -> list[Rule]:
    """Members of the active bundles, each once, in catalog order."""
    rule_ids = {
        member
        for bundle in catalog.bundles()
        if bundle.id in active_bundles
        for member in bundle.members
    }
    return [rule for rule in catalog.rules() if rule.id in rule_ids]


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def match(
    catalog: Catalog,
    active_bundles: AbstractSet[str],
    artifact_text: str,
    signals: Iterable[Signal],
    *,
    budget_ms: int | None = None,
) -> list[Match]:
    """Evaluate every rule of the active bundles against the artifact.

    Rules are independent of each other.  A rule that runs past *budget_ms*
    contributes a single ``engine/rule-timeout`` match instead of its
    findings; the remaining rules are still evaluated.
    """
    rules = rules_in_scope(catalog, active_bundles)
    if not rules:
        return []

    grouped = group_signals(signals)
    lines = LineIndex(artifact_text)
    matches: list[Match] = []

    for rule in rules:
        try:
            matches.extend(
                evaluate_rule(
                    rule, artifact_text, grouped, line_index=lines, budget_ms=budget_ms
                )
            )
        except RuleTimeout as exc:
            logger.warning("Skipping findings: %s", exc)
            matches.append(
                engine_match(
                    RULE_TIMEOUT,
                    f"Rule '{exc.rule_id}' exceeded its {exc.budget_ms}ms evaluation budget",
                )
            )

    return matches
