"""Tests for ruleloom.infrastructure.config — ruleloom.yml loading."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from ruleloom.engine.catalog import Severity
from ruleloom.infrastructure.config import (
    CONFIG_FILENAME,
    ConfigError,
    EngineConfig,
    load_config,
    parse_config,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)
        assert config == EngineConfig()
        assert config.threshold is Severity.LOW
        assert config.fail_on is Severity.HIGH
        assert config.workers == 1

    def test_all_keys(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "catalog: rules/catalog.yml\n"
            "threshold: medium\n"
            "fail_on: CRITICAL\n"
            "format: json\n"
            "workers: 4\n"
            "rule_budget_ms: 250\n"
        )
        config = load_config(tmp_path)
        assert config.catalog == tmp_path / "rules" / "catalog.yml"
        assert config.threshold is Severity.MEDIUM
        assert config.fail_on is Severity.CRITICAL
        assert config.output_format == "json"
        assert config.workers == 4
        assert config.rule_budget_ms == 250

    def test_absolute_catalog_path(self, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere.yml"
        (tmp_path / CONFIG_FILENAME).write_text(f"catalog: {target}\n")
        assert load_config(tmp_path).catalog == target

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.yml"
        path.write_text("workers: 2\n")
        assert load_config(tmp_path / "unused", path).workers == 2

    def test_explicit_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="cannot read config"):
            load_config(tmp_path, tmp_path / "nope.yml")

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("")
        assert load_config(tmp_path) == EngineConfig()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("workers: [\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(tmp_path)


class TestParseConfig:
    @pytest.mark.parametrize(
        ("data", "fragment"),
        [
            ({"threshold": "URGENT"}, "threshold"),
            ({"fail_on": 3}, "fail_on"),
            ({"workers": 0}, "workers"),
            ({"workers": True}, "workers"),
            ({"rule_budget_ms": "fast"}, "rule_budget_ms"),
            ({"format": "xml"}, "format"),
            ({"catalog": ""}, "catalog"),
        ],
    )
    def test_invalid_values(self, tmp_path: Path, data: dict[str, object], fragment: str) -> None:
        with pytest.raises(ConfigError, match=fragment):
            parse_config(data, tmp_path / CONFIG_FILENAME)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            parse_config(["workers"], tmp_path / CONFIG_FILENAME)

    def test_unknown_key_warns(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="ruleloom.infrastructure.config"):
            config = parse_config({"colour": "red"}, tmp_path / CONFIG_FILENAME)
        assert config == EngineConfig()
        assert "colour" in caplog.text
