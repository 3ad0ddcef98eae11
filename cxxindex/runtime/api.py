"""One-call library entry point."""

from __future__ import annotations

import logging

from cxxindex.graph.query import SymbolQuery
from cxxindex.runtime.config_loader import ConfigSource
from cxxindex.runtime.indexer import Indexer, UnitSource

logger = logging.getLogger("cxxindex.runtime.api")


def index_sources(units: UnitSource, config: ConfigSource = None) -> SymbolQuery:
    """Index a set of translation units and return the finished query API.

    Args:
        units: Mapping of unit id to source text, or ``(unit_id, text)``
            pairs. Malformed units become InvalidUnit diagnostics.
        config: Any source accepted by ``load_indexer_config``.

    Returns:
        SymbolQuery over the sealed table; ``query.diagnostics()`` lists
        every diagnostic in order.
    """
    indexer = Indexer(config)
    indexer.index_units(units)
    return indexer.finalize()
