"""Configuration schema definitions using Pydantic for validation.

Configuration errors are caught when the config is built, with clear error
messages, instead of surfacing halfway through an indexing run.
"""

from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator


class IndexerConfig(BaseModel):
    """Configuration for an indexing run.

    Attributes:
        max_expansion_depth: Nesting bound for macro-within-macro expansion.
        max_workers: Worker processes for per-unit pipelines (1 = in-process).
        predefined_macros: Macros visible at the top of every unit, keyed by
            ``NAME`` or ``NAME(a,b)`` with the replacement text as value.
        record_references: Whether function bodies are scanned for references.
        implicit_overrides: Whether methods matching a base virtual without
            ``override`` are recorded as overrides.
        record_expansions: Whether macro expansion sites are recorded.
    """

    max_expansion_depth: int = Field(default=64, ge=1, le=1024)
    max_workers: int = Field(default=1, ge=1, le=256)
    predefined_macros: Dict[str, str] = Field(default_factory=dict)
    record_references: bool = True
    implicit_overrides: bool = True
    record_expansions: bool = True

    model_config = {"extra": "forbid"}

    @field_validator("predefined_macros")
    @classmethod
    def validate_macro_names(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate that every key is ``NAME`` or ``NAME(params)``."""
        for signature in v:
            name, paren, rest = signature.partition("(")
            if not name.strip().isidentifier():
                raise ValueError(f"Invalid macro name in '{signature}'")
            if paren and not rest.rstrip().endswith(")"):
                raise ValueError(f"Unterminated parameter list in '{signature}'")
        return v

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexerConfig":
        """Build from a mapping, accepting an optional ``[indexer]`` table."""
        if "indexer" in data and isinstance(data["indexer"], dict):
            data = data["indexer"]
        return cls.model_validate(data)
