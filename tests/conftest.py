"""Shared test fixtures for Ruleloom."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from ruleloom.engine.catalog import parse_catalog_text

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from ruleloom.engine.catalog import Catalog


CATALOG_YAML = """\
version: 1
rules:
  - id: no-eval
    severity: CRITICAL
    description: Dynamic code execution
    trigger:
      pattern: '\\beval\\s*\\('
    message: "eval() call at line {line}"
    example:
      before: "eval(user_input)"
      after: "ast.literal_eval(user_input)"
  - id: bare-except
    severity: MEDIUM
    description: except without a type
    trigger:
      pattern: '^[ \\t]*except\\s*:'
      flags: [multiline]
    message: "bare except"
  - id: todo
    severity: LOW
    trigger:
      signal: todo-comment
    message: "Unresolved {token}"
bundles:
  - id: python
    members: [no-eval, bare-except]
    activation:
      mode: any-of
      signals: [api-import, error-handling]
  - id: hygiene
    members: [todo]
    activation:
      mode: any-of
      signals: [todo-comment]
"""

# Triggers the "python" bundle (import) and one CRITICAL eval() finding at 2:5.
EVAL_SOURCE = "import os\nx = eval(data)\n"


@pytest.fixture(autouse=True)
def _reset_ruleloom_logger() -> Iterator[None]:
    """Undo the CLI's logging setup so caplog keeps working across tests."""
    yield
    logger = logging.getLogger("ruleloom")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture()
def catalog() -> Catalog:
    """The small three-rule catalog used across the suite."""
    return parse_catalog_text(CATALOG_YAML, source="test-catalog")


@pytest.fixture()
def catalog_file(tmp_path: Path) -> Path:
    """The same catalog written to ``catalog.yml``."""
    path = tmp_path / "catalog.yml"
    path.write_text(CATALOG_YAML)
    return path


@pytest.fixture()
def catalog_yaml() -> str:
    return CATALOG_YAML


@pytest.fixture()
def eval_source() -> str:
    return EVAL_SOURCE
