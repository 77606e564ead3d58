"""File watcher: re-check artifacts on change and hot-reload the catalog."""

# ruleloom:domain=infrastructure

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from ruleloom.engine.catalog import CatalogError, load_catalog_file
from ruleloom.engine.session import (
    SOURCE_SUFFIXES,
    Artifact,
    collect_artifact_paths,
    run_batch,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from ruleloom.engine.session import CatalogStore, Session, SessionOptions

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 500


@dataclass(frozen=True)
class WatchEvent:
    """A single watch cycle after filtering and debounce."""

    files_changed: int
    catalog_reloaded: bool
    catalog_error: str | None  # reload failure; the previous catalog stays active
    artifacts_checked: int


def _watch_roots(targets: Sequence[Path], catalog_path: Path | None) -> list[Path]:
    """Directories to watch: target dirs, parents of target files, the catalog's dir."""
    roots: set[Path] = set()
    for target in targets:
        roots.add(target if target.is_dir() else target.parent)
    if catalog_path is not None:
        roots.add(catalog_path.parent)
    return sorted(r.resolve() for r in roots if r.is_dir())


def _is_temp(path: Path) -> bool:
    return path.name.startswith("~") or path.name.endswith(".tmp")


def _is_target(path: Path, targets: Sequence[Path]) -> bool:
    for target in targets:
        resolved = target.resolve()
        if resolved == path:
            return True
        if target.is_dir() and path.suffix in SOURCE_SUFFIXES:
            try:
                rel = path.relative_to(resolved)
            except ValueError:
                continue
            if not any(part.startswith(".") for part in rel.parts[:-1]):
                return True
    return False


def classify_changes(
    changes: Iterable[tuple[object, str]],
    *,
    targets: Sequence[Path],
    catalog_path: Path | None,
) -> tuple[bool, list[Path]]:
    """Split a change batch into (catalog changed?, changed artifact paths).

    Temporary files, deleted files and files outside the targets are
    ignored.  Artifact paths come back sorted and de-duplicated.
    """
    catalog_resolved = catalog_path.resolve() if catalog_path is not None else None
    catalog_changed = False
    changed: set[Path] = set()

    for _change_type, path_str in changes:
        path = Path(path_str).resolve()
        if _is_temp(path):
            continue
        if catalog_resolved is not None and path == catalog_resolved:
            catalog_changed = True
            continue
        if path.is_file() and _is_target(path, targets):
            changed.add(path)

    return catalog_changed, sorted(changed)


def reload_catalog(store: CatalogStore, catalog_path: Path) -> str | None:
    """Load *catalog_path* and swap it into *store*.

    Returns ``None`` on success, or the error message when the new catalog
    is invalid; the store then keeps serving the previous catalog.
    """
    try:
        catalog = load_catalog_file(catalog_path)
    except CatalogError as exc:
        logger.error("Catalog reload rejected, keeping previous catalog: %s", exc)
        return str(exc)
    store.replace(catalog)
    return None


def _format_time() -> str:
    """Return current time as ``HH:MM:SS`` string."""
    return datetime.now(tz=timezone.utc).strftime("%H:%M:%S")


def watch(
    targets: Sequence[Path],
    *,
    store: CatalogStore,
    render: Callable[[list[Session]], None],
    catalog_path: Path | None = None,
    options: SessionOptions | None = None,
    workers: int = 1,
    debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    callback: Callable[[WatchEvent], None] | None = None,
) -> None:
    """Check *targets*, then re-check on every change until interrupted.

    Source edits re-check only the changed files.  An edit to
    *catalog_path* reloads the catalog and re-checks every target.

    Requires ``watchfiles`` (optional dependency).
    """
    from rich.console import Console
    from watchfiles import watch as fs_watch

    console = Console(stderr=True)

    roots = _watch_roots(targets, catalog_path)
    if not roots:
        console.print("[red]No directories to watch.[/red]")
        return

    console.print(f"[bold blue]Watching:[/bold blue] {', '.join(str(r) for r in roots)}")
    console.print(f"[dim]Debounce: {debounce_ms}ms  |  Press Ctrl+C to stop[/dim]")

    initial = [Artifact.from_path(p) for p in collect_artifact_paths(targets)]
    render(run_batch(store, initial, options=options, workers=workers))

    try:
        for batch in fs_watch(*roots, debounce=debounce_ms):
            catalog_changed, changed = classify_changes(
                batch, targets=targets, catalog_path=catalog_path
            )
            if not catalog_changed and not changed:
                continue

            error: str | None = None
            if catalog_changed and catalog_path is not None:
                error = reload_catalog(store, catalog_path)

            if catalog_changed and error is None:
                to_check = collect_artifact_paths(targets)
            else:
                to_check = changed

            timestamp = _format_time()
            if error is not None:
                console.print(f"[dim]{timestamp}[/dim] [red]catalog rejected[/red] {error}")
            elif catalog_changed:
                console.print(
                    f"[dim]{timestamp}[/dim] [green]catalog reloaded[/green] "
                    f"({store.snapshot().fingerprint})"
                )

            if to_check:
                count = len(to_check)
                console.print(
                    f"[dim]{timestamp}[/dim] re-checking {count} file{'s' if count != 1 else ''}"
                )
                artifacts = [Artifact.from_path(p) for p in to_check]
                render(run_batch(store, artifacts, options=options, workers=workers))

            if callback is not None:
                callback(
                    WatchEvent(
                        files_changed=len(changed) + int(catalog_changed),
                        catalog_reloaded=catalog_changed and error is None,
                        catalog_error=error,
                        artifacts_checked=len(to_check),
                    )
                )

    except KeyboardInterrupt:
        console.print("\n[yellow]Watch stopped.[/yellow]")
