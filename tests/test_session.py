"""Tests for ruleloom.engine.session — the per-artifact pipeline and batches."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ruleloom.engine.catalog import Severity, parse_catalog_text
from ruleloom.engine.matcher import EXTRACTION_FAILED, INTERNAL_CONSISTENCY, Match
from ruleloom.engine.reporter import Report, format_json
from ruleloom.engine.resolver import resolve
from ruleloom.engine.session import (
    Artifact,
    CatalogStore,
    SessionOptions,
    collect_artifact_paths,
    run_batch,
    run_session,
    verify_references,
)
from ruleloom.engine.signals import Span

if TYPE_CHECKING:
    from pathlib import Path

    from ruleloom.engine.catalog import Catalog


SIGNAL_CATALOG = """\
version: 1
rules:
  - id: R1
    severity: CRITICAL
    trigger: {signal: api-import}
    message: "imports {token}"
bundles:
  - id: B1
    members: [R1]
    activation:
      mode: any-of
      signals: [api-import]
"""


# ---------------------------------------------------------------------------
# run_session
# ---------------------------------------------------------------------------


class TestSignalTriggeredRule:
    def test_signal_activates_bundle_and_rule_fires_at_its_span(self) -> None:
        catalog = parse_catalog_text(SIGNAL_CATALOG)
        # The import token "abcdefghij" sits at [10, 20].
        session = run_session(catalog, Artifact("mod.py", "   import abcdefghij\n"))

        assert {(s.kind, s.span) for s in session.signals} == {("api-import", Span(10, 20))}
        assert session.active_bundles == {"B1"}
        (d,) = session.diagnostics
        assert d.rank == 1
        assert d.rule_id == "R1"
        assert d.severity is Severity.CRITICAL
        assert d.span == Span(10, 20)
        assert d.message == "imports abcdefghij"

    def test_no_signals_no_diagnostics(self) -> None:
        catalog = parse_catalog_text(SIGNAL_CATALOG)
        session = run_session(catalog, Artifact("mod.py", "x = 1\n"))
        assert session.signals == frozenset()
        assert session.active_bundles == frozenset()
        assert session.diagnostics == []


class TestRunSession:
    def test_finds_eval(self, catalog: Catalog, eval_source: str) -> None:
        session = run_session(catalog, Artifact("app.py", eval_source))
        assert session.active_bundles == {"python"}
        assert [d.rule_id for d in session.diagnostics] == ["no-eval"]
        (d,) = session.diagnostics
        assert (d.rank, d.severity, d.line, d.column) == (1, Severity.CRITICAL, 2, 5)
        assert session.status == "findings"

    def test_zero_signals_zero_diagnostics(self, catalog: Catalog) -> None:
        # eval() is present but nothing activates a bundle.
        session = run_session(catalog, Artifact("snippet.py", "x = eval(data)\n"))
        assert session.signals == frozenset()
        assert session.active_bundles == frozenset()
        assert session.diagnostics == []
        assert session.status == "no findings"

    def test_bytes_artifact(self, catalog: Catalog, eval_source: str) -> None:
        session = run_session(catalog, Artifact("app.py", eval_source.encode()))
        assert [d.rule_id for d in session.diagnostics] == ["no-eval"]

    def test_idempotent(self, catalog: Catalog) -> None:
        text = "import os\n# TODO x\ntry:\n    eval(a)\nexcept:\n    pass\n"
        first = format_json(Report.from_sessions([run_session(catalog, Artifact("a.py", text))]))
        second = format_json(Report.from_sessions([run_session(catalog, Artifact("a.py", text))]))
        assert first == second

    def test_threshold_option(self, catalog: Catalog) -> None:
        text = "import os\n# TODO x\neval(a)\n"
        everything = run_session(catalog, Artifact("a.py", text))
        assert [d.rule_id for d in everything.diagnostics] == ["no-eval", "todo"]

        options = SessionOptions(threshold=Severity.HIGH)
        filtered = run_session(catalog, Artifact("a.py", text), options=options)
        assert [(d.rank, d.rule_id) for d in filtered.diagnostics] == [(1, "no-eval")]


class TestExtractionFailure:
    @pytest.mark.parametrize("content", [b"import os\n\xff\xfe", "import os\x00"])
    def test_undecodable_artifact(self, catalog: Catalog, content: str | bytes) -> None:
        session = run_session(catalog, Artifact("bin.dat", content))
        assert session.extraction_failed
        assert session.status == "extraction failed"
        (d,) = session.diagnostics
        assert d.rule_id == EXTRACTION_FAILED
        assert d.severity is Severity.HIGH
        assert d.category == "engine"

    def test_unreadable_file(self, catalog: Catalog, tmp_path: Path) -> None:
        artifact = Artifact.from_path(tmp_path / "missing.py")
        assert artifact.read_error is not None
        session = run_session(catalog, artifact)
        assert [d.rule_id for d in session.diagnostics] == [EXTRACTION_FAILED]
        assert "cannot read file" in session.diagnostics[0].message

    def test_failure_filtered_by_threshold(self, catalog: Catalog) -> None:
        options = SessionOptions(threshold=Severity.CRITICAL)
        session = run_session(catalog, Artifact("bin", b"\xff"), options=options)
        assert session.extraction_failed
        assert session.diagnostics == []


# ---------------------------------------------------------------------------
# verify_references
# ---------------------------------------------------------------------------


class TestVerifyReferences:
    def _match(self, rule_id: str, severity: Severity = Severity.HIGH) -> Match:
        return Match(
            rule_id=rule_id,
            severity=severity,
            span=Span(0, 4),
            line=1,
            column=1,
            message="m",
            ordinal=0,
        )

    def test_known_rules_pass(self, catalog: Catalog) -> None:
        assert verify_references(catalog, resolve([self._match("no-eval")])) == []

    def test_unknown_rule(self, catalog: Catalog) -> None:
        (issue,) = verify_references(catalog, resolve([self._match("ghost")]))
        assert issue.rule_id == INTERNAL_CONSISTENCY
        assert issue.severity is Severity.HIGH
        assert "'ghost'" in issue.message

    def test_unknown_superseded_rule(self, catalog: Catalog) -> None:
        diagnostics = resolve(
            [self._match("no-eval", Severity.CRITICAL), self._match("ghost", Severity.LOW)]
        )
        assert diagnostics[0].superseded == ("ghost",)
        (issue,) = verify_references(catalog, diagnostics)
        assert "'ghost'" in issue.message


# ---------------------------------------------------------------------------
# Batches and the catalog store
# ---------------------------------------------------------------------------


class TestRunBatch:
    def test_results_keep_input_order(self, catalog: Catalog, eval_source: str) -> None:
        artifacts = [
            Artifact(f"f{i}.py", eval_source if i % 2 else "x = 1\n") for i in range(12)
        ]
        sessions = run_batch(catalog, artifacts, workers=4)
        assert [s.artifact_name for s in sessions] == [a.name for a in artifacts]
        assert [bool(s.diagnostics) for s in sessions] == [bool(i % 2) for i in range(12)]

    def test_parallel_matches_sequential(self, catalog: Catalog, eval_source: str) -> None:
        artifacts = [Artifact(f"f{i}.py", eval_source) for i in range(6)]
        sequential = run_batch(catalog, artifacts, workers=1)
        parallel = run_batch(catalog, artifacts, workers=3)
        assert [s.diagnostics for s in sequential] == [s.diagnostics for s in parallel]

    def test_failure_does_not_stop_batch(self, catalog: Catalog, eval_source: str) -> None:
        artifacts = [Artifact("bad", b"\xff"), Artifact("good.py", eval_source)]
        sessions = run_batch(catalog, artifacts, workers=2)
        assert sessions[0].extraction_failed
        assert [d.rule_id for d in sessions[1].diagnostics] == ["no-eval"]

    def test_uses_current_store_snapshot(
        self, catalog: Catalog, catalog_yaml: str, eval_source: str
    ) -> None:
        store = CatalogStore(catalog)
        lowered = parse_catalog_text(catalog_yaml.replace("CRITICAL", "LOW"))
        store.replace(lowered)
        (session,) = run_batch(store, [Artifact("a.py", eval_source)])
        assert session.catalog is lowered
        assert session.diagnostics[0].severity is Severity.LOW


class TestCatalogStore:
    def test_replace_returns_previous(self, catalog: Catalog, catalog_yaml: str) -> None:
        store = CatalogStore(catalog)
        other = parse_catalog_text(catalog_yaml)
        assert store.generation == 0
        assert store.replace(other) is catalog
        assert store.snapshot() is other
        assert store.generation == 1

    def test_snapshot_survives_replace(
        self, catalog: Catalog, catalog_yaml: str, eval_source: str
    ) -> None:
        store = CatalogStore(catalog)
        snapshot = store.snapshot()
        store.replace(parse_catalog_text(catalog_yaml.replace("CRITICAL", "LOW")))
        session = run_session(snapshot, Artifact("a.py", eval_source))
        assert session.diagnostics[0].severity is Severity.CRITICAL


# ---------------------------------------------------------------------------
# Artifact discovery
# ---------------------------------------------------------------------------


class TestCollectArtifactPaths:
    def test_directory_walk(self, tmp_path: Path) -> None:
        (tmp_path / "a.py").write_text("x")
        (tmp_path / "notes.txt").write_text("x")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.tsx").write_text("x")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "hook.py").write_text("x")

        paths = collect_artifact_paths([tmp_path])
        assert paths == [tmp_path / "a.py", tmp_path / "sub" / "b.tsx"]

    def test_explicit_files_kept_and_deduplicated(self, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("x")
        (tmp_path / "a.py").write_text("x")

        paths = collect_artifact_paths([notes, tmp_path, tmp_path / "a.py"])
        assert paths == [notes, tmp_path / "a.py"]
