# ruleloom:domain=resolver
"""Priority resolution: suppress overlapping matches and rank the survivors."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ruleloom.engine.matcher import ENGINE_CATEGORY, RULE_CATEGORY

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ruleloom.engine.catalog import Severity
    from ruleloom.engine.matcher import Match
    from ruleloom.engine.signals import Span

    _Entry = tuple[Match, tuple[str, ...], int]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    """A resolved, ranked finding."""

    rank: int  # 1-based position in the final order
    rule_id: str
    severity: Severity
    span: Span
    line: int
    column: int
    message: str
    category: str = RULE_CATEGORY
    superseded: tuple[str, ...] = ()  # rule ids of suppressed overlapping matches
    suppressed: int = 0  # overlapping matches folded into this one, same rule included

    def to_dict(self) -> dict[str, object]:
        return {
            "rank": self.rank,
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "category": self.category,
            "span": [self.span.start, self.span.end],
            "line": self.line,
            "column": self.column,
            "message": self.message,
            "superseded": list(self.superseded),
            "suppressed": self.suppressed,
        }


def _priority_key(m: Match) -> tuple[int, int, int, int, str]:
    """Order in which overlapping matches claim their span."""
    return (-m.severity.rank, m.ordinal, m.span.start, m.span.end, m.message)


def _order_key(entry: _Entry) -> tuple[int, int, int, str, str]:
    m = entry[0]
    return (-m.severity.rank, m.span.start, m.span.end, m.rule_id, m.message)


def _suppress_overlaps(matches: list[Match]) -> list[_Entry]:
    """Keep the highest-priority match of every overlapping group.

    Matches are visited by severity, then catalog order.  A match whose span
    overlaps an already kept match is dropped and counted on the first such
    kept match; its rule id is recorded there unless it is the kept rule.
    """
    kept: list[Match] = []
    superseded: list[list[str]] = []
    counts: list[int] = []

    for m in sorted(matches, key=_priority_key):
        winner = next((i for i, k in enumerate(kept) if k.span.overlaps(m.span)), None)
        if winner is None:
            kept.append(m)
            superseded.append([])
            counts.append(0)
            continue
        logger.debug(
            "%s at %d-%d suppressed by %s at %d-%d",
            m.rule_id,
            m.span.start,
            m.span.end,
            kept[winner].rule_id,
            kept[winner].span.start,
            kept[winner].span.end,
        )
        counts[winner] += 1
        ids = superseded[winner]
        if m.rule_id != kept[winner].rule_id and m.rule_id not in ids:
            ids.append(m.rule_id)

    return [(m, tuple(ids), n) for m, ids, n in zip(kept, superseded, counts)]


def resolve(matches: Iterable[Match]) -> list[Diagnostic]:
    """Resolve overlap conflicts and return diagnostics in their final order.

    Rule matches compete for overlapping spans; engine matches are never
    suppressed.  The result is sorted by severity (descending), location,
    rule id and message, and ranked from 1.
    """
    rule_matches: list[Match] = []
    entries: list[_Entry] = []
    for m in matches:
        if m.category == ENGINE_CATEGORY:
            entries.append((m, (), 0))
        else:
            rule_matches.append(m)

    entries.extend(_suppress_overlaps(rule_matches))
    entries.sort(key=_order_key)

    return [
        Diagnostic(
            rank=rank,
            rule_id=m.rule_id,
            severity=m.severity,
            span=m.span,
            line=m.line,
            column=m.column,
            message=m.message,
            category=m.category,
            superseded=ids,
            suppressed=n,
        )
        for rank, (m, ids, n) in enumerate(entries, start=1)
    ]


def apply_threshold(diagnostics: Iterable[Diagnostic], threshold: Severity) -> list[Diagnostic]:
    """Drop diagnostics below *threshold* and re-rank the rest."""
    kept = [d for d in diagnostics if d.severity.rank >= threshold.rank]
    return [dataclasses.replace(d, rank=rank) for rank, d in enumerate(kept, start=1)]
