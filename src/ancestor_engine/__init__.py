"""Ancestor Engine - multi-source ancestor tree resolution and review consensus.

Builds multi-generation family trees from a customer's self-reported facts by
searching several rate-limited genealogy providers, scoring and merging their
candidates, and reconciling two independent AI reviews of the finished tree.
"""

__version__ = "0.3.0"

# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "models":
        from ancestor_engine import models
        return models
    if name == "sources":
        from ancestor_engine import sources
        return sources
    if name == "resolution":
        from ancestor_engine import resolution
        return resolution
    if name == "traversal":
        from ancestor_engine import traversal
        return traversal
    if name == "review":
        from ancestor_engine import review
        return review
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
