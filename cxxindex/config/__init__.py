"""Configuration schema and validation for cxxindex."""

from .schema import IndexerConfig

__all__ = ["IndexerConfig"]
