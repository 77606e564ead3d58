# ruleloom:domain=session
"""Sessions: run one artifact through the pipeline; batch many across threads."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ruleloom.engine.activator import activate
from ruleloom.engine.catalog import Catalog, NotFound, Severity
from ruleloom.engine.matcher import (
    ENGINE_CATEGORY,
    EXTRACTION_FAILED,
    INTERNAL_CONSISTENCY,
    engine_match,
    match,
)
from ruleloom.engine.resolver import apply_threshold, resolve
from ruleloom.engine.signals import ExtractionError, decode_artifact, extract

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from ruleloom.engine.matcher import Match
    from ruleloom.engine.resolver import Diagnostic
    from ruleloom.engine.signals import Signal

logger = logging.getLogger(__name__)

STDIN_NAME = "<stdin>"

# Source suffixes picked up when a directory is given as a target.
SOURCE_SUFFIXES = frozenset(
    {
        ".py",
        ".pyi",
        ".js",
        ".jsx",
        ".mjs",
        ".cjs",
        ".ts",
        ".tsx",
        ".vue",
        ".svelte",
    }
)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Artifact:
    """A unit of source text submitted for evaluation."""

    name: str
    content: str | bytes
    read_error: str | None = None  # set when the file could not be read

    @classmethod
    def from_path(cls, path: Path) -> Artifact:
        try:
            return cls(name=str(path), content=path.read_bytes())
        except OSError as exc:
            return cls(name=str(path), content=b"", read_error=f"cannot read file: {exc}")


@dataclass(frozen=True)
class SessionOptions:
    """Per-run knobs shared by every session of a batch."""

    threshold: Severity = Severity.LOW
    budget_ms: int | None = None


@dataclass
class Session:
    """One artifact's pass through extract → activate → match → resolve.

    Owns everything it produces; only the catalog snapshot is shared.
    """

    artifact_name: str
    catalog: Catalog
    text: str = ""
    signals: frozenset[Signal] = frozenset()
    active_bundles: frozenset[str] = frozenset()
    diagnostics: list[Diagnostic] = field(default_factory=list)
    extraction_failed: bool = False

    @property
    def status(self) -> str:
        if self.extraction_failed:
            return "extraction failed"
        return "findings" if self.diagnostics else "no findings"


class CatalogStore:
    """Holds the current catalog; reloads swap in a whole new value.

    Sessions take a :meth:`snapshot` when they start and keep using it even
    if :meth:`replace` runs while they are in flight.
    """

    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        """Number of replacements so far."""
        with self._lock:
            return self._generation

    def snapshot(self) -> Catalog:
        with self._lock:
            return self._catalog

    def replace(self, catalog: Catalog) -> Catalog:
        """Install *catalog* and return the previous one."""
        with self._lock:
            previous = self._catalog
            self._catalog = catalog
            self._generation += 1
        logger.info(
            "Catalog replaced: %s -> %s (generation %d)",
            previous.fingerprint,
            catalog.fingerprint,
            self._generation,
        )
        return previous


# ---------------------------------------------------------------------------
# Session pipeline
# ---------------------------------------------------------------------------


def verify_references(catalog: Catalog, diagnostics: Iterable[Diagnostic]) -> list[Match]:
    """Check that every rule id a diagnostic names exists in *catalog*.

    Each unknown id, whether reported directly or as a superseded reference,
    becomes an ``engine/internal-consistency`` match.
    """
    issues: list[Match] = []
    for diagnostic in diagnostics:
        if diagnostic.category == ENGINE_CATEGORY:
            continue
        for rule_id in (diagnostic.rule_id, *diagnostic.superseded):
            try:
                catalog.rule(rule_id)
            except NotFound as exc:
                logger.error("Catalog/engine mismatch: %s", exc)
                issues.append(
                    engine_match(
                        INTERNAL_CONSISTENCY,
                        f"Diagnostic at line {diagnostic.line} references unknown rule "
                        f"'{rule_id}'",
                    )
                )
    return issues


def run_session(
    catalog: Catalog,
    artifact: Artifact,
    *,
    options: SessionOptions | None = None,
) -> Session:
    """Run a single artifact through every stage against *catalog*.

    Extraction failures do not raise: the session reports one
    ``engine/extraction-failed`` diagnostic instead.
    """
    opts = options or SessionOptions()
    session = Session(artifact_name=artifact.name, catalog=catalog)

    matches: list[Match]
    try:
        if artifact.read_error is not None:
            raise ExtractionError(artifact.read_error)
        session.text = decode_artifact(artifact.content)
        session.signals = extract(session.text)
    except ExtractionError as exc:
        logger.warning("Extraction failed for %s: %s", artifact.name, exc)
        session.extraction_failed = True
        matches = [engine_match(EXTRACTION_FAILED, f"Extraction failed: {exc}")]
    else:
        session.active_bundles = activate(catalog, session.signals)
        matches = match(
            catalog,
            session.active_bundles,
            session.text,
            session.signals,
            budget_ms=opts.budget_ms,
        )

    diagnostics = resolve(matches)
    issues = verify_references(catalog, diagnostics)
    if issues:
        diagnostics = resolve([*matches, *issues])

    session.diagnostics = apply_threshold(diagnostics, opts.threshold)
    logger.debug(
        "%s: %d signals, %d bundles, %d diagnostics",
        artifact.name,
        len(session.signals),
        len(session.active_bundles),
        len(session.diagnostics),
    )
    return session


def run_batch(
    source: CatalogStore | Catalog,
    artifacts: Sequence[Artifact],
    *,
    options: SessionOptions | None = None,
    workers: int = 1,
) -> list[Session]:
    """Run one session per artifact, in parallel when *workers* > 1.

    Each session snapshots the catalog when it starts.  Results come back in
    the order of *artifacts*.
    """
    store = source if isinstance(source, CatalogStore) else CatalogStore(source)

    def _run(artifact: Artifact) -> Session:
        return run_session(store.snapshot(), artifact, options=options)

    if workers <= 1 or len(artifacts) <= 1:
        return [_run(artifact) for artifact in artifacts]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(_run, artifacts))


# ---------------------------------------------------------------------------
# Artifact discovery
# ---------------------------------------------------------------------------


def _is_hidden(path: Path, root: Path) -> bool:
    try:
        rel = path.relative_to(root)
    except ValueError:
        return False
    return any(part.startswith(".") for part in rel.parts[:-1])


def collect_artifact_paths(paths: Iterable[Path]) -> list[Path]:
    """Expand directories into source files, keeping explicit files as given.

    Directory walks skip hidden directories and files whose suffix is not in
    ``SOURCE_SUFFIXES``.  The result is de-duplicated and keeps first-seen
    order; directory contents are sorted.
    """
    result: list[Path] = []
    seen: set[Path] = set()
    for path in paths:
        if path.is_dir():
            candidates = sorted(
                p
                for p in path.rglob("*")
                if p.is_file() and p.suffix in SOURCE_SUFFIXES and not _is_hidden(p, path)
            )
        else:
            candidates = [path]
        for candidate in candidates:
            if candidate not in seen:
                seen.add(candidate)
                result.append(candidate)
    return result
