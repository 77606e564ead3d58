"""Ruleloom CLI entry point."""

# ruleloom:service=cli

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from ruleloom import __version__
from ruleloom.engine.catalog import SEVERITY_NAMES, Severity

if TYPE_CHECKING:
    from ruleloom.engine.catalog import Catalog
    from ruleloom.engine.reporter import Report
    from ruleloom.engine.session import Artifact, Session
    from ruleloom.infrastructure.config import EngineConfig

EXIT_FINDINGS = 1
EXIT_CONFIG_ERROR = 2

_SEVERITY_CHOICE = click.Choice(SEVERITY_NAMES, case_sensitive=False)
_FORMAT_CHOICE = click.Choice(["rich", "json", "checklist", "porcelain"])


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    """Route library logging to stderr through Rich."""
    from rich.console import Console
    from rich.logging import RichHandler

    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    root = logging.getLogger("ruleloom")
    root.handlers.clear()
    root.addHandler(
        RichHandler(console=Console(stderr=True), show_time=False, show_path=verbose)
    )
    root.setLevel(level)
    root.propagate = False


# ruleloom:service=cli
@click.group()
@click.version_option(version=__version__, prog_name="ruleloom")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """Ruleloom - match coding-rule catalogs against source code."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

_catalog_option = click.option(
    "--catalog",
    "catalog_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="RULELOOM_CATALOG",
    default=None,
    help="Catalog YAML file (default: from ruleloom.yml, else the bundled catalog).",
)
_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ./ruleloom.yml if present).",
)


def _load_config_or_exit(config_path: Path | None) -> EngineConfig:
    from ruleloom.infrastructure.config import ConfigError, load_config

    try:
        return load_config(Path.cwd(), config_path)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


def _load_catalog_or_exit(catalog_path: Path | None) -> Catalog:
    """Load the catalog, exiting with status 2 before any session runs on failure."""
    from ruleloom.engine.catalog import CatalogError, load_catalog_file, load_default_catalog

    try:
        if catalog_path is None:
            return load_default_catalog()
        return load_catalog_file(catalog_path)
    except CatalogError as exc:
        click.echo(f"Error: invalid catalog: {exc}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


def _read_artifacts(paths: tuple[Path, ...]) -> list[Artifact]:
    """Turn CLI targets into artifacts; ``-`` or no targets reads standard input."""
    from ruleloom.engine.session import STDIN_NAME, Artifact, collect_artifact_paths

    if not paths or any(str(p) == "-" for p in paths):
        if len(paths) > 1:
            click.echo("Error: '-' (stdin) cannot be combined with file targets.", err=True)
            sys.exit(EXIT_CONFIG_ERROR)
        data = click.get_binary_stream("stdin").read()
        return [Artifact(name=STDIN_NAME, content=data)]

    return [Artifact.from_path(p) for p in collect_artifact_paths(paths)]


def _resolve_format(fmt: str | None, config: EngineConfig) -> str:
    """Explicit flag > config file > TTY detection."""
    if fmt is not None:
        return fmt
    if config.output_format is not None:
        return config.output_format
    return "rich" if sys.stdout.isatty() else "checklist"


def _render(report: Report, fmt: str) -> str:
    from ruleloom.engine.reporter import FORMATTERS, format_rich

    if fmt == "rich":
        return format_rich(report, color=sys.stdout.isatty()).rstrip("\n")
    return FORMATTERS[fmt](report)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


# ruleloom:domain=session
@main.command()
@click.argument(
    "paths",
    nargs=-1,
    type=click.Path(allow_dash=True, path_type=Path),
)
@_catalog_option
@_config_option
@click.option(
    "--format", "fmt", type=_FORMAT_CHOICE, default=None, help="Output format."
)
@click.option(
    "--threshold",
    type=_SEVERITY_CHOICE,
    envvar="RULELOOM_THRESHOLD",
    default=None,
    help="Only emit diagnostics at or above this severity (default: LOW, i.e. all).",
)
@click.option(
    "--fail-on",
    type=_SEVERITY_CHOICE,
    envvar="RULELOOM_FAIL_ON",
    default=None,
    help="Exit 1 when a diagnostic at or above this severity is emitted (default: HIGH).",
)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Parallel sessions.")
@click.option(
    "--budget-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Per-rule evaluation budget in milliseconds.",
)
def check(
    *,
    paths: tuple[Path, ...],
    catalog_path: Path | None,
    config_path: Path | None,
    fmt: str | None,
    threshold: str | None,
    fail_on: str | None,
    workers: int | None,
    budget_ms: int | None,
) -> None:
    """Check source files (or stdin) against the rule catalog.

    Diagnostics are ordered CRITICAL first.  Exit codes: 0 = nothing at or
    above --fail-on, 1 = findings at or above --fail-on, 2 = configuration
    or catalog error.
    """
    from ruleloom.engine.reporter import Report
    from ruleloom.engine.session import SessionOptions, run_batch

    config = _load_config_or_exit(config_path)
    catalog = _load_catalog_or_exit(catalog_path or config.catalog)
    artifacts = _read_artifacts(paths)

    options = SessionOptions(
        threshold=Severity.parse(threshold) if threshold else config.threshold,
        budget_ms=budget_ms or config.rule_budget_ms,
    )
    sessions = run_batch(catalog, artifacts, options=options, workers=workers or config.workers)

    report = Report.from_sessions(sessions)
    click.echo(_render(report, _resolve_format(fmt, config)))

    gate = Severity.parse(fail_on) if fail_on else config.fail_on
    worst = report.worst()
    if worst is not None and worst.rank >= gate.rank:
        sys.exit(EXIT_FINDINGS)


# ---------------------------------------------------------------------------
# catalog
# ---------------------------------------------------------------------------


# ruleloom:domain=catalog
@main.group("catalog")
def catalog_group() -> None:
    """Inspect and validate rule catalogs."""


@catalog_group.command("validate")
@_catalog_option
@_config_option
def catalog_validate(*, catalog_path: Path | None, config_path: Path | None) -> None:
    """Load the catalog and report whether it is valid (exit 2 if not)."""
    config = _load_config_or_exit(config_path)
    source = catalog_path or config.catalog
    catalog = _load_catalog_or_exit(source)
    unbundled = [r.id for r in catalog.unbundled_rules()]

    click.echo(
        f"✓ {source or 'bundled catalog'}: {len(catalog.rules())} rules, "
        f"{len(catalog.bundles())} bundles (version {catalog.version}, "
        f"fingerprint {catalog.fingerprint})"
    )
    if unbundled:
        click.echo(f"  {len(unbundled)} rule(s) in no bundle: {', '.join(unbundled)}")


@catalog_group.command("show")
@_catalog_option
@_config_option
@click.option("--examples", is_flag=True, help="Include before/after examples.")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
def catalog_show(
    *,
    catalog_path: Path | None,
    config_path: Path | None,
    examples: bool,
    output_json: bool,
) -> None:
    """List bundles and their rules.

    Examples are documentation: they are printed, never checked.
    """
    config = _load_config_or_exit(config_path)
    catalog = _load_catalog_or_exit(catalog_path or config.catalog)

    if output_json:
        data = {
            "version": catalog.version,
            "fingerprint": catalog.fingerprint,
            "bundles": [
                {
                    "id": b.id,
                    "activation": {"mode": b.activation.mode, "signals": list(b.activation.signals)},
                    "members": list(b.members),
                }
                for b in catalog.bundles()
            ],
            "rules": [
                {
                    "id": r.id,
                    "severity": r.severity.value,
                    "description": r.description,
                    "message": r.message,
                    **(
                        {"example": {"before": r.example.before, "after": r.example.after}}
                        if examples and r.example is not None
                        else {}
                    ),
                }
                for r in catalog.rules()
            ],
        }
        click.echo(json.dumps(data, indent=2))
        return

    for bundle in catalog.bundles():
        signals = ", ".join(bundle.activation.signals)
        click.echo(f"{bundle.id} ({bundle.activation.mode}: {signals})")
        for member in bundle.members:
            rule = catalog.rule(member)
            click.echo(f"  {rule.severity.value:<8} {rule.id}  {rule.description}")
            if examples and rule.example is not None:
                click.echo("    before:")
                for line in rule.example.before.splitlines():
                    click.echo(f"      {line}")
                click.echo("    after:")
                for line in rule.example.after.splitlines():
                    click.echo(f"      {line}")
        click.echo("")


# ---------------------------------------------------------------------------
# signals
# ---------------------------------------------------------------------------


# ruleloom:domain=signals
@main.command()
@click.argument("path", type=click.Path(allow_dash=True, path_type=Path))
@_catalog_option
@_config_option
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
def signals(
    *,
    path: Path,
    catalog_path: Path | None,
    config_path: Path | None,
    output_json: bool,
) -> None:
    """Show the signals found in PATH and the bundles they activate."""
    from ruleloom.engine.activator import activate
    from ruleloom.engine.matcher import LineIndex
    from ruleloom.engine.signals import ExtractionError, decode_artifact, extract

    config = _load_config_or_exit(config_path)
    catalog = _load_catalog_or_exit(catalog_path or config.catalog)
    artifact = _read_artifacts((path,))[0]

    try:
        if artifact.read_error is not None:
            raise ExtractionError(artifact.read_error)
        text = decode_artifact(artifact.content)
        found = sorted(extract(text), key=lambda s: (s.span, s.kind))
    except ExtractionError as exc:
        click.echo(f"Error: extraction failed for {artifact.name}: {exc}", err=True)
        sys.exit(EXIT_FINDINGS)

    bundles = sorted(activate(catalog, found))
    lines = LineIndex(text)

    if output_json:
        data = {
            "artifact": artifact.name,
            "signals": [
                {
                    "kind": s.kind,
                    "span": [s.span.start, s.span.end],
                    "line": lines.locate(s.span.start)[0],
                    "token": s.token,
                }
                for s in found
            ],
            "bundles": bundles,
        }
        click.echo(json.dumps(data, indent=2))
        return

    for s in found:
        line, column = lines.locate(s.span.start)
        click.echo(f"{line}:{column}  {s.kind:<22} {s.token}")
    click.echo(f"Active bundles: {', '.join(bundles) if bundles else '(none)'}")


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


# ruleloom:domain=watcher
@main.command("watch")
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, path_type=Path),
)
@_catalog_option
@_config_option
@click.option("--format", "fmt", type=_FORMAT_CHOICE, default=None, help="Output format.")
@click.option(
    "--threshold", type=_SEVERITY_CHOICE, envvar="RULELOOM_THRESHOLD", default=None
)
@click.option(
    "--debounce",
    default=500,
    type=int,
    help="Debounce delay in milliseconds (default: 500).",
)
def watch_cmd(
    *,
    paths: tuple[Path, ...],
    catalog_path: Path | None,
    config_path: Path | None,
    fmt: str | None,
    threshold: str | None,
    debounce: int,
) -> None:
    """Re-check PATHS on change; catalog edits are reloaded atomically.

    Requires watchfiles: pip install ruleloom[watch]
    """
    try:
        from ruleloom.infrastructure.watcher import watch
    except ImportError:
        click.echo(
            "Error: watch requires 'watchfiles'. Install with: pip install ruleloom[watch]",
            err=True,
        )
        sys.exit(EXIT_CONFIG_ERROR)

    from ruleloom.engine.reporter import Report
    from ruleloom.engine.session import CatalogStore, SessionOptions

    config = _load_config_or_exit(config_path)
    source = catalog_path or config.catalog
    store = CatalogStore(_load_catalog_or_exit(source))
    output_format = _resolve_format(fmt, config)
    options = SessionOptions(
        threshold=Severity.parse(threshold) if threshold else config.threshold,
        budget_ms=config.rule_budget_ms,
    )

    def _print(sessions: list[Session]) -> None:
        click.echo(_render(Report.from_sessions(sessions), output_format))

    try:
        watch(
            list(paths),
            store=store,
            render=_print,
            catalog_path=source,
            options=options,
            workers=config.workers,
            debounce_ms=debounce,
        )
    except ImportError:
        click.echo(
            "Error: watch requires 'watchfiles'. Install with: pip install ruleloom[watch]",
            err=True,
        )
        sys.exit(EXIT_CONFIG_ERROR)
