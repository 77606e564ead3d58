"""Project configuration: read ``ruleloom.yml`` and fall back to defaults."""

# ruleloom:domain=infrastructure

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from ruleloom.engine.catalog import Severity

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "ruleloom.yml"
OUTPUT_FORMATS: tuple[str, ...] = ("rich", "json", "checklist", "porcelain")


class ConfigError(Exception):
    """Raised when the config file or one of its values is invalid."""


@dataclass(frozen=True)
class EngineConfig:
    """Settings for a check run.

    Every field can be set in ``ruleloom.yml``; CLI flags and environment
    variables override the file.
    """

    catalog: Path | None = None  # None -> bundled default catalog
    threshold: Severity = Severity.LOW  # emit diagnostics at or above
    fail_on: Severity = Severity.HIGH  # non-zero exit at or above
    output_format: str | None = None  # None -> rich on a TTY, checklist otherwise
    workers: int = 1
    rule_budget_ms: int | None = None


def _positive_int(data: dict[str, object], key: str, source: Path) -> int | None:
    raw = data.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        msg = f"{source}: '{key}' must be a positive integer, got {raw!r}"
        raise ConfigError(msg)
    return raw


def _severity(data: dict[str, object], key: str, source: Path, default: Severity) -> Severity:
    raw = data.get(key)
    if raw is None:
        return default
    try:
        return Severity.parse(raw)
    except ValueError as exc:
        msg = f"{source}: '{key}': {exc}"
        raise ConfigError(msg) from exc


def parse_config(data: object, source: Path) -> EngineConfig:
    """Build an :class:`EngineConfig` from a parsed config mapping.

    A relative ``catalog`` path is resolved against the config file's
    directory.
    """
    if data is None:
        return EngineConfig()
    if not isinstance(data, dict):
        msg = f"{source}: config must be a YAML mapping"
        raise ConfigError(msg)

    known = {"catalog", "threshold", "fail_on", "format", "workers", "rule_budget_ms"}
    for key in sorted(set(data) - known):
        logger.warning("%s: ignoring unknown config key '%s'", source, key)

    catalog: Path | None = None
    catalog_raw = data.get("catalog")
    if catalog_raw is not None:
        if not isinstance(catalog_raw, str) or not catalog_raw.strip():
            msg = f"{source}: 'catalog' must be a non-empty path string"
            raise ConfigError(msg)
        catalog = Path(catalog_raw)
        if not catalog.is_absolute():
            catalog = source.parent / catalog

    output_format = data.get("format")
    if output_format is not None and output_format not in OUTPUT_FORMATS:
        msg = f"{source}: 'format' must be one of {list(OUTPUT_FORMATS)}, got {output_format!r}"
        raise ConfigError(msg)

    defaults = EngineConfig()
    return EngineConfig(
        catalog=catalog,
        threshold=_severity(data, "threshold", source, defaults.threshold),
        fail_on=_severity(data, "fail_on", source, defaults.fail_on),
        output_format=output_format,
        workers=_positive_int(data, "workers", source) or defaults.workers,
        rule_budget_ms=_positive_int(data, "rule_budget_ms", source),
    )


def load_config(project_root: Path, config_path: Path | None = None) -> EngineConfig:
    """Load settings from *config_path* or ``<project_root>/ruleloom.yml``.

    A missing default file yields the defaults; an explicit path that cannot
    be read, or any invalid content, raises ``ConfigError``.
    """
    path = config_path or project_root / CONFIG_FILENAME
    if config_path is None and not path.is_file():
        return EngineConfig()

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        msg = f"cannot read config {path}: {exc}"
        raise ConfigError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"{path}: invalid YAML: {exc}"
        raise ConfigError(msg) from exc

    config = parse_config(data, path)
    logger.debug("Loaded config from %s: %s", path, config)
    return config
