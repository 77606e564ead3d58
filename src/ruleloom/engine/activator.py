# ruleloom:domain=activator
"""Bundle activation: decide which bundles are in scope for a signal set."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ruleloom.engine.catalog import Catalog
    from ruleloom.engine.signals import Signal


def activate(catalog: Catalog, signals: Iterable[Signal]) -> frozenset[str]:
    """Return the ids of bundles whose activation condition holds for *signals*.

    ``all-of`` requires every listed signal kind, ``any-of`` at least one.
    No bundle is active by default, so an artifact without signals
    activates nothing.
    """
    present = {signal.kind for signal in signals}
    if not present:
        return frozenset()
    return frozenset(
        bundle.id for bundle in catalog.bundles() if bundle.activation.is_satisfied(present)
    )
