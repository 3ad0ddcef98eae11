"""Helpers for loading indexer configuration from TOML/JSON sources.

This module provides a single entry point `load_indexer_config`
that accepts various configuration sources:

* None -> default IndexerConfig
* IndexerConfig -> returned unchanged
* dict -> IndexerConfig.from_dict
* Path / path-like string -> load .toml/.json from filesystem
* Inline JSON/TOML strings
"""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cxxindex.config.schema import IndexerConfig

logger = logging.getLogger("cxxindex.runtime.config_loader")

ConfigSource = Union[str, Path, Dict[str, Any], IndexerConfig, None]


def _detect_format(text: str) -> str:
    stripped = text.lstrip()
    if stripped.startswith("{"):
        return "json"
    if stripped.startswith("["):
        # A TOML document may open with a ``[indexer]`` table header.
        try:
            json.loads(stripped)
        except ValueError:
            return "toml"
        return "json"
    return "toml"


def load_indexer_config(source: ConfigSource) -> IndexerConfig:
    """Load IndexerConfig from various configuration sources.

    Args:
        source: One of:
            * None: returns the default IndexerConfig
            * IndexerConfig: returned as is
            * dict: treated as already-parsed configuration mapping
            * str/Path: either a filesystem path to a .toml/.json file,
              or an inline TOML/JSON string (auto-detected)

    Returns:
        IndexerConfig instance.

    Raises:
        ValueError: If the parsed configuration is not a mapping or fails
            validation.
        TypeError: If the source type is not supported.
    """
    if source is None:
        logger.debug("No config source provided; using default IndexerConfig")
        return IndexerConfig()

    if isinstance(source, IndexerConfig):
        return source

    if isinstance(source, dict):
        logger.debug("Loading IndexerConfig from provided dict")
        return IndexerConfig.from_dict(source)

    if isinstance(source, (str, Path)):
        text: Optional[str] = None
        fmt: Optional[str] = None
        path = Path(source)

        if _is_existing_file(path):
            text = path.read_text(encoding="utf-8")
            suffix = path.suffix.lower()
            if suffix in {".toml", ".tml"}:
                fmt = "toml"
            elif suffix == ".json":
                fmt = "json"
            else:
                fmt = _detect_format(text)
            logger.info("Loading configuration from file: %s (fmt=%s)", path, fmt)
        else:
            text = str(source)
            fmt = _detect_format(text)
            logger.info("Loading configuration from inline %s string", fmt)

        if fmt == "json":
            data = json.loads(text)
        else:
            data = tomllib.loads(text)

        if not isinstance(data, dict):
            raise ValueError("Top-level configuration must be a mapping/dict")

        return IndexerConfig.from_dict(data)

    raise TypeError(f"Unsupported config source type: {type(source)!r}")


def _is_existing_file(path: Path) -> bool:
    try:
        return path.is_file()
    except (OSError, ValueError):
        # Inline text may be too long or contain characters no path can hold.
        return False


__all__ = ["ConfigSource", "load_indexer_config"]
