"""Breadth-first tree traversal and search strategies."""

from .anchors import build_anchors, parse_notes_for_anchors
from .controller import NoUsableSourcesError, TraversalConfig, TraversalController
from .strategies import PASS_ORDER, SearchPass, build_search_passes, supplementary_passes

__all__ = [
    "NoUsableSourcesError",
    "PASS_ORDER",
    "SearchPass",
    "TraversalConfig",
    "TraversalController",
    "build_anchors",
    "build_search_passes",
    "parse_notes_for_anchors",
    "supplementary_passes",
]
