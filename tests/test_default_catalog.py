"""Tests for the catalog bundled with ruleloom."""

from __future__ import annotations

import pytest

from ruleloom.engine.catalog import Catalog, Severity, load_default_catalog
from ruleloom.engine.session import Artifact, run_session


@pytest.fixture(scope="module")
def default_catalog() -> Catalog:
    return load_default_catalog()


def _check(catalog: Catalog, text: str) -> list[tuple[str, Severity]]:
    session = run_session(catalog, Artifact("sample", text))
    return [(d.rule_id, d.severity) for d in session.diagnostics]


class TestDefaultCatalog:
    def test_loads(self, default_catalog: Catalog) -> None:
        assert len(default_catalog.rules()) > 20
        assert {b.id for b in default_catalog.bundles()} >= {
            "security",
            "error-handling",
            "api-handlers",
            "async-code",
            "react-hooks",
            "components",
            "maintenance",
        }

    def test_every_rule_is_bundled(self, default_catalog: Catalog) -> None:
        assert list(default_catalog.unbundled_rules()) == []

    def test_every_rule_has_a_description(self, default_catalog: Catalog) -> None:
        assert all(rule.description for rule in default_catalog.rules())


class TestDefaultRules:
    def test_eval(self, default_catalog: Catalog) -> None:
        found = _check(default_catalog, "import os\nresult = eval(data)\n")
        assert found == [("no-eval", Severity.CRITICAL)]

    def test_hardcoded_secret(self, default_catalog: Catalog) -> None:
        session = run_session(
            default_catalog, Artifact("settings.py", 'import os\nAPI_KEY = "sk-live-123456"\n')
        )
        (d,) = session.diagnostics
        assert d.rule_id == "hardcoded-secret"
        assert "'API_KEY'" in d.message

    def test_handler_without_error_handling(self, default_catalog: Catalog) -> None:
        text = (
            "from flask import Flask\n"
            "app = Flask(__name__)\n"
            '@app.route("/")\n'
            "def index():\n"
            '    return "hi"\n'
        )
        session = run_session(default_catalog, Artifact("app.py", text))
        (d,) = session.diagnostics
        assert d.rule_id == "handler-without-error-handling"
        assert d.message.startswith("Handler 'route' has no error handling")
        assert d.superseded == ("handler-without-auth",)

    def test_blocking_sleep_only_in_async_code(self, default_catalog: Catalog) -> None:
        sync = "def main():\n    time.sleep(1)\n"
        assert _check(default_catalog, sync) == []
        async_text = "async def main():\n    time.sleep(1)\n"
        assert _check(default_catalog, async_text) == [
            ("blocking-sleep-in-async", Severity.HIGH)
        ]

    def test_todo_is_low(self, default_catalog: Catalog) -> None:
        assert _check(default_catalog, "x = 1  # TODO: tidy\n") == [
            ("unresolved-todo", Severity.LOW)
        ]

    def test_examples_are_not_checked(self, default_catalog: Catalog) -> None:
        # Example snippets contain code the rules flag; a catalog alone
        # never produces diagnostics.
        assert _check(default_catalog, "") == []
