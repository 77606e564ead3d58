"""Engine domain — catalog, signal extractor, activator, matcher, resolver, reporter."""

# ruleloom:domain=engine

from ruleloom.engine.activator import activate
from ruleloom.engine.catalog import (
    AbsentTrigger,
    Activation,
    Bundle,
    Catalog,
    CatalogError,
    Example,
    NotFound,
    PairTrigger,
    PatternTrigger,
    Rule,
    Severity,
    SignalTrigger,
    Trigger,
    load_catalog,
    load_catalog_file,
    load_default_catalog,
    parse_catalog_text,
)
from ruleloom.engine.matcher import (
    ENGINE_CATEGORY,
    EXTRACTION_FAILED,
    INTERNAL_CONSISTENCY,
    RULE_TIMEOUT,
    Match,
    RuleTimeout,
    evaluate_rule,
    match,
)
from ruleloom.engine.reporter import (
    Report,
    format_checklist,
    format_json,
    format_porcelain,
    format_rich,
    report,
)
from ruleloom.engine.resolver import Diagnostic, apply_threshold, resolve
from ruleloom.engine.session import (
    Artifact,
    CatalogStore,
    Session,
    SessionOptions,
    collect_artifact_paths,
    run_batch,
    run_session,
)
from ruleloom.engine.signals import SIGNAL_KINDS, ExtractionError, Signal, Span, extract

__all__ = [
    "ENGINE_CATEGORY",
    "EXTRACTION_FAILED",
    "INTERNAL_CONSISTENCY",
    "RULE_TIMEOUT",
    "SIGNAL_KINDS",
    "AbsentTrigger",
    "Activation",
    "Artifact",
    "Bundle",
    "Catalog",
    "CatalogError",
    "CatalogStore",
    "Diagnostic",
    "Example",
    "ExtractionError",
    "Match",
    "NotFound",
    "PairTrigger",
    "PatternTrigger",
    "Report",
    "Rule",
    "RuleTimeout",
    "Session",
    "SessionOptions",
    "Severity",
    "Signal",
    "SignalTrigger",
    "Span",
    "Trigger",
    "activate",
    "apply_threshold",
    "collect_artifact_paths",
    "evaluate_rule",
    "extract",
    "format_checklist",
    "format_json",
    "format_porcelain",
    "format_rich",
    "load_catalog",
    "load_catalog_file",
    "load_default_catalog",
    "match",
    "parse_catalog_text",
    "report",
    "resolve",
    "run_batch",
    "run_session",
]
