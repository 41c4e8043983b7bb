"""Genealogy record source adapters."""

from .base import (
    AuthenticationError,
    BaseSource,
    Capability,
    RateLimitError,
    RecordSource,
    SourceError,
    SourceResponseError,
    SourceUnavailableError,
)
from .familysearch import FamilySearchSource
from .freebmd import FreeBMDSource
from .geni import GeniSource
from .registry import SourceRegistry

__all__ = [
    "AuthenticationError",
    "BaseSource",
    "Capability",
    "FamilySearchSource",
    "FreeBMDSource",
    "GeniSource",
    "RateLimitError",
    "RecordSource",
    "SourceError",
    "SourceRegistry",
    "SourceResponseError",
    "SourceUnavailableError",
]
