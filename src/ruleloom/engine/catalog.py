# ruleloom:domain=catalog
"""Rule catalog: parse catalog definitions, validate them, and freeze the result."""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import re
import string
from dataclasses import dataclass
from importlib import resources
from typing import TYPE_CHECKING

import regex
import yaml

from ruleloom.engine.signals import SIGNAL_KINDS

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping
    from collections.abc import Set as AbstractSet
    from pathlib import Path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUPPORTED_SCHEMA_VERSIONS: frozenset[int] = frozenset({1})
VALID_ACTIVATION_MODES: frozenset[str] = frozenset({"all-of", "any-of"})
TRIGGER_KINDS: tuple[str, ...] = ("pattern", "absent", "pair", "signal")
DEFAULT_CATALOG_RESOURCE = "default_catalog.yml"

_REGEX_FLAGS: dict[str, int] = {
    "ignorecase": regex.IGNORECASE,
    "multiline": regex.MULTILINE,
    "dotall": regex.DOTALL,
}
# Keys allowed next to the trigger kind key.
_TRIGGER_EXTRA_KEYS: dict[str, frozenset[str]] = {
    "pattern": frozenset({"flags"}),
    "absent": frozenset({"flags", "anchor"}),
    "pair": frozenset({"flags"}),
    "signal": frozenset({"flags", "token"}),
}
_PLACEHOLDER_RE = re.compile(r"[A-Za-z_]\w*")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CatalogError(Exception):
    """Raised when catalog definitions are malformed or inconsistent."""


class NotFound(LookupError):  # noqa: N818
    """Raised when a rule or bundle id is not part of the catalog."""


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


class Severity(enum.Enum):
    """Closed, totally ordered severity scale (CRITICAL highest)."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANKS[self]

    @classmethod
    def parse(cls, value: object) -> Severity:
        """Parse a severity name case-insensitively, raising ``ValueError``."""
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            msg = f"invalid severity '{value}', must be one of {SEVERITY_NAMES}"
            raise ValueError(msg) from None


_SEVERITY_RANKS: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}
SEVERITY_NAMES: list[str] = [s.value for s in Severity]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternTrigger:
    """Fires at every match of *pattern*."""

    pattern: regex.Pattern[str]


@dataclass(frozen=True)
class AbsentTrigger:
    """Fires when *pattern* occurs nowhere in the artifact.

    With an *anchor* signal kind the rule fires once per anchor signal,
    otherwise once at the start of the artifact.
    """

    pattern: regex.Pattern[str]
    anchor: str | None = None


@dataclass(frozen=True)
class PairTrigger:
    """Fires at every *open_pattern* match without a following *close_pattern*.

    The close pattern is searched within *window* characters after the open
    match, or up to the end of the artifact when *window* is ``None``.
    """

    open_pattern: regex.Pattern[str]
    close_pattern: regex.Pattern[str]
    window: int | None = None


@dataclass(frozen=True)
class SignalTrigger:
    """Fires at every extracted signal of *kind* (optionally filtered by token)."""

    kind: str
    token: regex.Pattern[str] | None = None


Trigger = PatternTrigger | AbsentTrigger | PairTrigger | SignalTrigger


@dataclass(frozen=True)
class Example:
    """Before/after snippet pair.  Documentation only, never evaluated."""

    before: str
    after: str


@dataclass(frozen=True)
class Rule:
    """A single catalog rule."""

    id: str
    severity: Severity
    trigger: Trigger
    message: str  # template, e.g. "eval() call at line {line}"
    ordinal: int  # position in catalog definition order
    description: str = ""
    example: Example | None = None


@dataclass(frozen=True)
class Activation:
    """Signal condition under which a bundle is in scope."""

    mode: str  # "all-of" | "any-of"
    signals: tuple[str, ...]

    def is_satisfied(self, present: AbstractSet[str]) -> bool:
        if self.mode == "all-of":
            return all(kind in present for kind in self.signals)
        return any(kind in present for kind in self.signals)


@dataclass(frozen=True)
class Bundle:
    """A named group of rules sharing an activation condition."""

    id: str
    members: tuple[str, ...]
    activation: Activation


class Catalog:
    """Immutable, validated collection of rules and bundles.

    Built by :func:`load_catalog`.  Reloading produces a new ``Catalog``;
    an existing instance never changes.
    """

    __slots__ = ("_bundle_index", "_bundles", "_fingerprint", "_rule_index", "_rules", "_version")

    def __init__(
        self,
        rules: Iterable[Rule],
        bundles: Iterable[Bundle],
        *,
        version: int = 1,
        fingerprint: str = "",
    ) -> None:
        rules_t = tuple(rules)
        bundles_t = tuple(bundles)
        init = object.__setattr__
        init(self, "_rules", rules_t)
        init(self, "_bundles", bundles_t)
        init(self, "_rule_index", {r.id: r for r in rules_t})
        init(self, "_bundle_index", {b.id: b for b in bundles_t})
        init(self, "_version", version)
        init(self, "_fingerprint", fingerprint)

    def __setattr__(self, name: str, value: object) -> None:
        msg = "Catalog is immutable"
        raise AttributeError(msg)

    def __delattr__(self, name: str) -> None:
        msg = "Catalog is immutable"
        raise AttributeError(msg)

    def __repr__(self) -> str:
        return (
            f"Catalog(rules={len(self._rules)}, bundles={len(self._bundles)}, "
            f"fingerprint={self._fingerprint!r})"
        )

    @property
    def version(self) -> int:
        return self._version

    @property
    def fingerprint(self) -> str:
        """Short content hash of the definitions this catalog was built from."""
        return self._fingerprint

    def rules(self) -> tuple[Rule, ...]:
        """All rules in definition order."""
        return self._rules

    def bundles(self) -> tuple[Bundle, ...]:
        """All bundles in definition order."""
        return self._bundles

    def rule(self, rule_id: str) -> Rule:
        try:
            return self._rule_index[rule_id]
        except KeyError:
            msg = f"rule '{rule_id}' is not in the catalog"
            raise NotFound(msg) from None

    def bundle(self, bundle_id: str) -> Bundle:
        try:
            return self._bundle_index[bundle_id]
        except KeyError:
            msg = f"bundle '{bundle_id}' is not in the catalog"
            raise NotFound(msg) from None

    def unbundled_rules(self) -> Iterator[Rule]:
        """Rules that belong to no bundle and therefore never fire."""
        bundled = {member for b in self._bundles for member in b.members}
        return (r for r in self._rules if r.id not in bundled)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _require_str(value: object, context: str) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"{context} must be a non-empty string"
        raise CatalogError(msg)
    return value


def _parse_flags(raw: object, context: str) -> int:
    if raw is None:
        return 0
    if not isinstance(raw, list):
        msg = f"{context}: 'flags' must be a list"
        raise CatalogError(msg)
    flags = 0
    for name in raw:
        flag = _REGEX_FLAGS.get(str(name).lower())
        if flag is None:
            msg = f"{context}: unknown regex flag '{name}', must be one of {sorted(_REGEX_FLAGS)}"
            raise CatalogError(msg)
        flags |= flag
    return flags


def _compile(raw: object, context: str, flags: int) -> regex.Pattern[str]:
    """Compile a non-empty regex, turning syntax errors into ``CatalogError``."""
    pattern = _require_str(raw, context)
    try:
        return regex.compile(pattern, flags)
    except regex.error as exc:
        msg = f"{context}: invalid regex {pattern!r}: {exc}"
        raise CatalogError(msg) from exc


def _check_signal_kind(raw: object, context: str) -> str:
    kind = _require_str(raw, context)
    if kind not in SIGNAL_KINDS:
        msg = f"{context}: unknown signal kind '{kind}', must be one of {sorted(SIGNAL_KINDS)}"
        raise CatalogError(msg)
    return kind


def _parse_trigger(rule_id: str, data: object) -> Trigger:
    """Parse the ``trigger`` block of a rule into one of the trigger variants."""
    context = f"Rule '{rule_id}' trigger"
    if not isinstance(data, dict):
        msg = f"{context} must be a mapping"
        raise CatalogError(msg)

    kinds = [k for k in TRIGGER_KINDS if k in data]
    if len(kinds) != 1:
        msg = f"{context} must have exactly one of {', '.join(repr(k) for k in TRIGGER_KINDS)}"
        raise CatalogError(msg)
    kind = kinds[0]

    unknown = set(data) - {kind} - _TRIGGER_EXTRA_KEYS[kind]
    if unknown:
        msg = f"{context}: unexpected keys {sorted(str(k) for k in unknown)} for '{kind}' trigger"
        raise CatalogError(msg)

    flags = _parse_flags(data.get("flags"), context)

    if kind == "pattern":
        return PatternTrigger(pattern=_compile(data["pattern"], f"{context}.pattern", flags))

    if kind == "absent":
        anchor_raw = data.get("anchor")
        anchor = None
        if anchor_raw is not None:
            anchor = _check_signal_kind(anchor_raw, f"{context}.anchor")
        return AbsentTrigger(
            pattern=_compile(data["absent"], f"{context}.absent", flags),
            anchor=anchor,
        )

    if kind == "pair":
        pair_data = data["pair"]
        if not isinstance(pair_data, dict):
            msg = f"{context}.pair must be a mapping with 'open' and 'close'"
            raise CatalogError(msg)
        window_raw = pair_data.get("window")
        window: int | None = None
        if window_raw is not None:
            if isinstance(window_raw, bool) or not isinstance(window_raw, int) or window_raw <= 0:
                msg = f"{context}.pair.window must be a positive integer"
                raise CatalogError(msg)
            window = window_raw
        return PairTrigger(
            open_pattern=_compile(pair_data.get("open"), f"{context}.pair.open", flags),
            close_pattern=_compile(pair_data.get("close"), f"{context}.pair.close", flags),
            window=window,
        )

    token_raw = data.get("token")
    return SignalTrigger(
        kind=_check_signal_kind(data["signal"], f"{context}.signal"),
        token=_compile(token_raw, f"{context}.token", flags) if token_raw is not None else None,
    )


def _parse_message(rule_id: str, raw: object) -> str:
    """Validate a message template: only bare ``{name}`` placeholders are allowed."""
    message = _require_str(raw, f"Rule '{rule_id}' message")
    try:
        parsed = list(string.Formatter().parse(message))
    except ValueError as exc:
        msg = f"Rule '{rule_id}' message is not a valid template: {exc}"
        raise CatalogError(msg) from exc
    for _literal, field_name, format_spec, conversion in parsed:
        if field_name is None:
            continue
        if not _PLACEHOLDER_RE.fullmatch(field_name) or format_spec or conversion:
            msg = (
                f"Rule '{rule_id}' message placeholder '{{{field_name}}}' is invalid, "
                f"use plain names like '{{match}}' or '{{line}}'"
            )
            raise CatalogError(msg)
    return message


def _parse_example(rule_id: str, raw: object) -> Example | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        msg = f"Rule '{rule_id}' example must be a mapping with 'before' and 'after'"
        raise CatalogError(msg)
    before = raw.get("before")
    after = raw.get("after")
    if not isinstance(before, str) or not isinstance(after, str):
        msg = f"Rule '{rule_id}' example needs string 'before' and 'after' fields"
        raise CatalogError(msg)
    return Example(before=before, after=after)


def _parse_rule(idx: int, data: object) -> Rule:
    if not isinstance(data, dict):
        msg = f"catalog: rule at index {idx} must be a mapping"
        raise CatalogError(msg)

    rule_id = data.get("id")
    if not isinstance(rule_id, str) or not rule_id.strip():
        msg = f"catalog: rule at index {idx} missing required 'id' field"
        raise CatalogError(msg)
    if rule_id.startswith("engine/"):
        msg = f"catalog: rule id '{rule_id}' uses the reserved 'engine/' prefix"
        raise CatalogError(msg)

    if "severity" not in data:
        msg = f"catalog: rule '{rule_id}' missing required 'severity' field"
        raise CatalogError(msg)
    try:
        severity = Severity.parse(data["severity"])
    except ValueError as exc:
        msg = f"catalog: rule '{rule_id}' has {exc}"
        raise CatalogError(msg) from exc

    if "trigger" not in data:
        msg = f"catalog: rule '{rule_id}' missing required 'trigger' field"
        raise CatalogError(msg)

    return Rule(
        id=rule_id,
        severity=severity,
        trigger=_parse_trigger(rule_id, data["trigger"]),
        message=_parse_message(rule_id, data.get("message")),
        ordinal=idx,
        description=str(data.get("description", "")),
        example=_parse_example(rule_id, data.get("example")),
    )


def _parse_activation(bundle_id: str, data: object) -> Activation:
    context = f"Bundle '{bundle_id}' activation"
    if not isinstance(data, dict):
        msg = f"{context} must be a mapping with 'mode' and 'signals'"
        raise CatalogError(msg)

    mode = str(data.get("mode", ""))
    if mode not in VALID_ACTIVATION_MODES:
        msg = f"{context}: invalid mode '{mode}', must be one of {sorted(VALID_ACTIVATION_MODES)}"
        raise CatalogError(msg)

    signals_raw = data.get("signals")
    if not isinstance(signals_raw, list) or not signals_raw:
        msg = f"{context}: 'signals' must be a non-empty list"
        raise CatalogError(msg)
    signals = tuple(_check_signal_kind(s, f"{context}.signals") for s in signals_raw)
    return Activation(mode=mode, signals=signals)


def _parse_bundle(idx: int, data: object, rule_ids: AbstractSet[str]) -> Bundle:
    if not isinstance(data, dict):
        msg = f"catalog: bundle at index {idx} must be a mapping"
        raise CatalogError(msg)

    bundle_id = data.get("id")
    if not isinstance(bundle_id, str) or not bundle_id.strip():
        msg = f"catalog: bundle at index {idx} missing required 'id' field"
        raise CatalogError(msg)

    members_raw = data.get("members")
    if not isinstance(members_raw, list) or not members_raw:
        msg = f"Bundle '{bundle_id}': 'members' must be a non-empty list of rule ids"
        raise CatalogError(msg)

    members: list[str] = []
    for member in members_raw:
        member_id = str(member)
        if member_id not in rule_ids:
            msg = f"Bundle '{bundle_id}': member '{member_id}' is not a defined rule"
            raise CatalogError(msg)
        if member_id in members:
            msg = f"Bundle '{bundle_id}': member '{member_id}' is listed twice"
            raise CatalogError(msg)
        members.append(member_id)

    return Bundle(
        id=bundle_id,
        members=tuple(members),
        activation=_parse_activation(bundle_id, data.get("activation")),
    )


def _fingerprint(definitions: Mapping[str, object]) -> str:
    payload = json.dumps(definitions, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_catalog(definitions: object) -> Catalog:
    """Validate catalog *definitions* and return a frozen :class:`Catalog`.

    *definitions* is the parsed document: a mapping with ``version``,
    ``rules`` and ``bundles``.  Raises ``CatalogError`` on the first problem;
    a catalog is never partially loaded.
    """
    if not isinstance(definitions, dict):
        msg = "catalog must be a mapping"
        raise CatalogError(msg)

    version = definitions.get("version")
    if version is None:
        msg = "catalog: missing required 'version' field"
        raise CatalogError(msg)
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        expected = sorted(SUPPORTED_SCHEMA_VERSIONS)
        msg = f"catalog: unsupported version {version}, expected one of {expected}"
        raise CatalogError(msg)

    rules_data = definitions.get("rules", [])
    if not isinstance(rules_data, list):
        msg = "catalog: 'rules' must be a list"
        raise CatalogError(msg)
    bundles_data = definitions.get("bundles", [])
    if not isinstance(bundles_data, list):
        msg = "catalog: 'bundles' must be a list"
        raise CatalogError(msg)

    seen_rules: set[str] = set()
    rules: list[Rule] = []
    for idx, rule_data in enumerate(rules_data):
        rule = _parse_rule(idx, rule_data)
        if rule.id in seen_rules:
            msg = f"catalog: duplicate rule id '{rule.id}'"
            raise CatalogError(msg)
        seen_rules.add(rule.id)
        rules.append(rule)

    seen_bundles: set[str] = set()
    bundles: list[Bundle] = []
    for idx, bundle_data in enumerate(bundles_data):
        bundle = _parse_bundle(idx, bundle_data, seen_rules)
        if bundle.id in seen_bundles:
            msg = f"catalog: duplicate bundle id '{bundle.id}'"
            raise CatalogError(msg)
        seen_bundles.add(bundle.id)
        bundles.append(bundle)

    catalog = Catalog(
        rules,
        bundles,
        version=int(version),
        fingerprint=_fingerprint(definitions),
    )
    for rule in catalog.unbundled_rules():
        logger.warning("Rule '%s' belongs to no bundle and will never fire", rule.id)
    logger.debug(
        "Loaded catalog %s: %d rules, %d bundles",
        catalog.fingerprint,
        len(rules),
        len(bundles),
    )
    return catalog


def parse_catalog_text(text: str, source: str = "<catalog>") -> Catalog:
    """Parse catalog YAML text and load it."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"{source}: invalid YAML: {exc}"
        raise CatalogError(msg) from exc
    try:
        return load_catalog(data)
    except CatalogError as exc:
        msg = f"{source}: {exc}"
        raise CatalogError(msg) from exc


def load_catalog_file(path: Path) -> Catalog:
    """Read a catalog YAML file and load it.

    I/O and YAML syntax problems are reported as ``CatalogError`` too.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        msg = f"cannot read catalog {path}: {exc}"
        raise CatalogError(msg) from exc
    return parse_catalog_text(text, source=str(path))


def load_default_catalog() -> Catalog:
    """Load the catalog shipped inside the package."""
    resource = resources.files("ruleloom.data").joinpath(DEFAULT_CATALOG_RESOURCE)
    return parse_catalog_text(resource.read_text(encoding="utf-8"), source=DEFAULT_CATALOG_RESOURCE)
