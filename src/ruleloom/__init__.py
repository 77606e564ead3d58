"""Ruleloom - rule-matching and diagnostic engine for coding-rule catalogs."""

__version__ = "0.4.0"
