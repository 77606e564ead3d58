# ruleloom:domain=signals
"""Signal extraction: independent lexical scanners over a single artifact."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class ExtractionError(Exception):
    """Raised when an artifact cannot be decoded or tokenized."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class Span:
    """Half-open character range ``[start, end)`` inside an artifact."""

    start: int
    end: int

    def overlaps(self, other: Span) -> bool:
        """Return True when the spans are identical or share at least one character."""
        if self == other:
            return True
        return self.start < other.end and other.start < self.end

    def __str__(self) -> str:
        return f"[{self.start},{self.end}]"


@dataclass(frozen=True, order=True)
class Signal:
    """A lexical cue found in an artifact."""

    kind: str  # one of SIGNAL_KINDS
    span: Span
    token: str  # matched token, e.g. "useState" or "requests"


@dataclass(frozen=True)
class Scanner:
    """Recognizes one signal kind with a set of regexes.

    A pattern may define a ``token`` named group; the signal span and token
    then cover only that group instead of the whole match.
    """

    kind: str
    patterns: tuple[re.Pattern[str], ...]

    def scan(self, text: str) -> Iterator[Signal]:
        for pattern in self.patterns:
            has_token = "token" in pattern.groupindex
            for m in pattern.finditer(text):
                if has_token and m.group("token") is not None:
                    start, end = m.span("token")
                else:
                    start, end = m.span()
                yield Signal(kind=self.kind, span=Span(start, end), token=text[start:end])


# ---------------------------------------------------------------------------
# Scanner table (patterns compiled once)
# ---------------------------------------------------------------------------

SCANNERS: tuple[Scanner, ...] = (
    Scanner(
        "api-import",
        (
            # Python: from x import y
            re.compile(r"^[ \t]*from[ \t]+(?P<token>\.*[\w.]+)[ \t]+import\b", re.MULTILINE),
            # Python: import x (lines with quotes or 'from' belong to JS)
            re.compile(
                r"^[ \t]*import[ \t]+(?P<token>[\w.]+)(?![^\n]*\bfrom\b)(?![^\n]*[\"'])",
                re.MULTILINE,
            ),
            # ES modules: import x from "y" / import "y"
            re.compile(
                r"^[ \t]*import[ \t]+(?:[^\"'\n;]+?[ \t]+from[ \t]+)?[\"'](?P<token>[^\"'\n]+)[\"']",
                re.MULTILINE,
            ),
            # CommonJS
            re.compile(r"\brequire\(\s*[\"'](?P<token>[^\"'\n]+)[\"']\s*\)"),
        ),
    ),
    Scanner(
        "hook-usage",
        (re.compile(r"\b(?P<token>use[A-Z]\w*)\s*\("),),
    ),
    Scanner(
        "handler-definition",
        (
            re.compile(
                r"^[ \t]*@(?:\w+\.)*(?P<token>route|get|post|put|patch|delete|websocket)\s*\(",
                re.MULTILINE,
            ),
            re.compile(r"\b(?:app|router|server)\.(?P<token>get|post|put|patch|delete|all)\s*\("),
            re.compile(r"\bdef\s+(?P<token>handle_\w+|on_\w+)\s*\("),
            re.compile(r"\bfunction\s+(?P<token>handle[A-Z]\w*|on[A-Z]\w*)\s*\("),
            re.compile(r"\b(?:const|let)\s+(?P<token>handle[A-Z]\w*)\s*="),
        ),
    ),
    Scanner(
        "component-definition",
        (
            re.compile(r"\bfunction\s+(?P<token>[A-Z]\w*)\s*\("),
            re.compile(
                r"\b(?:const|let)\s+(?P<token>[A-Z]\w*)\s*(?::[^=\n]+)?=\s*"
                r"(?:\([^)\n]*\)|\w+)\s*=>"
            ),
            re.compile(r"\bclass\s+(?P<token>\w+)\s+extends\s+(?:React\.)?(?:Pure)?Component\b"),
        ),
    ),
    Scanner(
        "async-usage",
        (
            re.compile(r"\b(?P<token>async)\s+(?:def|function)\b"),
            re.compile(r"\b(?P<token>await)\b"),
        ),
    ),
    Scanner(
        "error-handling",
        (
            re.compile(r"^[ \t]*(?P<token>try)\s*[:{]", re.MULTILINE),
            re.compile(r"^[ \t]*(?P<token>except)\b", re.MULTILINE),
            re.compile(r"\b(?P<token>catch)\s*[({]"),
        ),
    ),
    Scanner(
        "sql-query",
        (re.compile(r"[\"'`](?P<token>(?:SELECT|INSERT|UPDATE|DELETE)\b[^\"'`\n]*)"),),
    ),
    Scanner(
        "secret-assignment",
        (
            re.compile(
                r"\b(?P<token>\w*(?:password|passwd|secret|token|api_?key)\w*)"
                r"\s*[:=]\s*[\"'][^\"'\n]{4,}[\"']",
                re.IGNORECASE,
            ),
        ),
    ),
    Scanner(
        "network-call",
        (
            re.compile(
                r"\b(?P<token>(?:requests|httpx|axios)\.(?:get|post|put|patch|delete|request))\s*\("
            ),
            re.compile(r"\b(?P<token>fetch)\s*\("),
        ),
    ),
    Scanner(
        "todo-comment",
        (re.compile(r"(?:#|//|/\*)\s*(?P<token>TODO|FIXME|XXX)\b"),),
    ),
)

SIGNAL_KINDS: frozenset[str] = frozenset(scanner.kind for scanner in SCANNERS)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def decode_artifact(artifact: str | bytes) -> str:
    """Return the artifact as text.

    Bytes are decoded as strict UTF-8.  Text containing NUL characters is
    treated as binary content and rejected.
    """
    if isinstance(artifact, bytes):
        try:
            text = artifact.decode("utf-8")
        except UnicodeDecodeError as exc:
            msg = f"artifact is not valid UTF-8 (byte offset {exc.start})"
            raise ExtractionError(msg) from exc
    else:
        text = artifact
    if "\x00" in text:
        msg = "artifact contains NUL bytes (binary content)"
        raise ExtractionError(msg)
    return text


def extract(artifact: str | bytes, scanners: Iterable[Scanner] = SCANNERS) -> frozenset[Signal]:
    """Run every scanner over *artifact* and return the union of their signals.

    Raises ``ExtractionError`` when the artifact cannot be decoded.
    """
    text = decode_artifact(artifact)
    signals: set[Signal] = set()
    for scanner in scanners:
        signals.update(scanner.scan(text))
    return frozenset(signals)


def group_signals(signals: Iterable[Signal]) -> dict[str, list[Signal]]:
    """Group signals by kind; each group is sorted by span."""
    grouped: dict[str, list[Signal]] = {}
    for signal in signals:
        grouped.setdefault(signal.kind, []).append(signal)
    for group in grouped.values():
        group.sort()
    return grouped
