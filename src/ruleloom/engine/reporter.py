# ruleloom:domain=reporter
"""Diagnostic reporting: structured JSON, checklist, porcelain, and Rich text."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ruleloom.engine.catalog import Severity

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from ruleloom.engine.resolver import Diagnostic
    from ruleloom.engine.session import Session

logger = logging.getLogger(__name__)

NO_FINDINGS = "no findings"
HAS_FINDINGS = "findings"
EXTRACTION_FAILED = "extraction failed"

_SEVERITY_STYLES: dict[Severity, str] = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
}


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtifactReport:
    """Resolved diagnostics of one artifact."""

    name: str
    diagnostics: tuple[Diagnostic, ...]
    extraction_failed: bool = False

    @property
    def status(self) -> str:
        if self.extraction_failed:
            return EXTRACTION_FAILED
        return HAS_FINDINGS if self.diagnostics else NO_FINDINGS


@dataclass(frozen=True)
class Report:
    """Everything a run emits, in artifact order."""

    artifacts: tuple[ArtifactReport, ...]

    @classmethod
    def from_sessions(cls, sessions: Iterable[Session]) -> Report:
        return cls(
            artifacts=tuple(
                ArtifactReport(
                    name=s.artifact_name,
                    diagnostics=tuple(s.diagnostics),
                    extraction_failed=s.extraction_failed,
                )
                for s in sessions
            )
        )

    @classmethod
    def single(cls, diagnostics: Sequence[Diagnostic], name: str = "<artifact>") -> Report:
        return cls(artifacts=(ArtifactReport(name=name, diagnostics=tuple(diagnostics)),))

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return [d for a in self.artifacts for d in a.diagnostics]

    @property
    def has_findings(self) -> bool:
        return any(a.diagnostics for a in self.artifacts)

    def counts(self) -> dict[str, int]:
        """Diagnostic count per severity name, CRITICAL first."""
        counts = {s.value: 0 for s in Severity}
        for d in self.diagnostics:
            counts[d.severity.value] += 1
        return counts

    def worst(self) -> Severity | None:
        """Highest severity present, or ``None`` when there are no diagnostics."""
        ranked = [d.severity for d in self.diagnostics]
        if not ranked:
            return None
        return max(ranked, key=lambda s: s.rank)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def _location(name: str, d: Diagnostic) -> str:
    return f"{name}:{d.line}:{d.column}"


def format_json(report: Report) -> str:
    """Format a Report as structured JSON.

    Returns a JSON object with an ``artifacts`` array and a ``summary``.
    Artifacts without diagnostics carry ``"status": "no findings"``.
    """
    artifacts: list[dict[str, object]] = []
    for artifact in report.artifacts:
        artifacts.append(
            {
                "artifact": artifact.name,
                "status": artifact.status,
                "diagnostics": [d.to_dict() for d in artifact.diagnostics],
            }
        )

    output: dict[str, object] = {
        "artifacts": artifacts,
        "summary": {
            "status": HAS_FINDINGS if report.has_findings else NO_FINDINGS,
            "artifacts": len(report.artifacts),
            "diagnostics": len(report.diagnostics),
            "by_severity": report.counts(),
        },
    }
    return json.dumps(output, indent=2)


def format_checklist(report: Report) -> str:
    """Format a Report as a flat checklist, one line per diagnostic.

    Line format: ``[ ] SEVERITY rule-id: message (artifact:line:col)``.
    Superseded rule ids are appended in brackets.  Returns ``No findings.``
    when there is nothing to report.
    """
    lines: list[str] = []
    for artifact in report.artifacts:
        for d in artifact.diagnostics:
            line = f"[ ] {d.severity.value} {d.rule_id}: {d.message} ({_location(artifact.name, d)})"
            if d.superseded:
                line += f" [supersedes: {', '.join(d.superseded)}]"
            lines.append(line)
    if not lines:
        return "No findings."
    return "\n".join(lines)


def format_porcelain(report: Report) -> str:
    """Format a Report as machine-readable one-line-per-diagnostic output.

    Format: ``artifact:line:column:SEVERITY:rule_id:message``.
    Returns the single line ``no findings`` when there are no diagnostics.
    """
    lines = [
        f"{_location(artifact.name, d)}:{d.severity.value}:{d.rule_id}:{d.message}"
        for artifact in report.artifacts
        for d in artifact.diagnostics
    ]
    if not lines:
        return NO_FINDINGS
    return "\n".join(lines)


def format_rich(report: Report, *, color: bool = False, width: int = 100) -> str:
    """Format a Report as Rich-rendered text grouped by artifact.

    Example output::

        src/app.py
          1. CRITICAL  no-eval  3:5  eval() executes arbitrary code
             supersedes: dynamic-exec

        1 finding (1 CRITICAL, 0 HIGH, 0 MEDIUM, 0 LOW) in 1 artifact

    Without diagnostics the output is ``✓ No findings (N artifacts checked)``.
    """
    from io import StringIO

    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    buf = StringIO()
    console = Console(file=buf, force_terminal=color, no_color=not color, width=width)

    checked = len(report.artifacts)
    plural = "artifact" if checked == 1 else "artifacts"

    if not report.has_findings:
        console.print(f"[green]✓ No findings[/green] ({checked} {plural} checked)")
        return buf.getvalue()

    for artifact in report.artifacts:
        if not artifact.diagnostics:
            continue
        console.print(f"[bold]{escape(artifact.name)}[/bold]")
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("#", justify="right", style="dim", width=4)
        table.add_column("Severity", width=8)
        table.add_column("Rule", style="cyan")
        table.add_column("Where", style="dim")
        table.add_column("Message")
        for d in artifact.diagnostics:
            style = _SEVERITY_STYLES[d.severity]
            message = escape(d.message)
            if d.superseded:
                message += f"\n[dim]supersedes: {escape(', '.join(d.superseded))}[/dim]"
            table.add_row(
                f"{d.rank}.",
                f"[{style}]{d.severity.value}[/{style}]",
                escape(d.rule_id),
                f"{d.line}:{d.column}",
                message,
            )
        console.print(table)
        console.print()

    counts = report.counts()
    total = sum(counts.values())
    breakdown = ", ".join(f"{n} {name}" for name, n in counts.items())
    noun = "finding" if total == 1 else "findings"
    console.print(f"[bold]{total} {noun}[/bold] ({breakdown}) in {checked} {plural}")
    return buf.getvalue()


FORMATTERS = {
    "json": format_json,
    "checklist": format_checklist,
    "porcelain": format_porcelain,
    "rich": format_rich,
}


DEFAULT_FORMAT = "json"


def report(
    diagnostics: Sequence[Diagnostic], fmt: str = DEFAULT_FORMAT, *, name: str = "<artifact>"
) -> str:
    """Render one artifact's diagnostics in the requested format.

    An unknown *fmt* falls back to JSON with a warning; rendering never raises.
    """
    formatter = FORMATTERS.get(fmt)
    if formatter is None:
        logger.warning(
            "Unknown report format %r, using %s (expected one of %s)",
            fmt,
            DEFAULT_FORMAT,
            ", ".join(sorted(FORMATTERS)),
        )
        formatter = FORMATTERS[DEFAULT_FORMAT]
    return formatter(Report.single(diagnostics, name=name))
