"""Packaged data files (default rule catalog)."""
