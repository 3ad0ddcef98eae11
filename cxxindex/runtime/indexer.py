"""Indexing orchestration.

The ``Indexer`` feeds translation units through the per-unit pipeline
(in-process or on the worker pool), merges the results into one shared
symbol table in submission order, and finally runs the hierarchy and
reference resolvers before sealing the table behind a ``SymbolQuery``.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from cxxindex.analysis.hierarchy import HierarchyResolver
from cxxindex.analysis.references import ReferenceResolver
from cxxindex.graph.query import SymbolQuery
from cxxindex.graph.symbol_table import SealedTableError, SymbolTable
from cxxindex.parsers.base import BaseCodeParser, InvalidUnitError, UnitResult
from cxxindex.parsers.cpp.code_parser import CppCodeParser
from cxxindex.runtime.config_loader import ConfigSource, load_indexer_config
from cxxindex.runtime.diagnostics import Diagnostic, DiagnosticKind
from cxxindex.runtime.pool import UnitParserPool

logger = logging.getLogger("cxxindex.runtime.indexer")

UnitSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]
ProgressCallback = Callable[[UnitResult], None]


class Indexer:
    """Builds a symbol index from C/C++ translation units.

    Args:
        config: Any source accepted by ``load_indexer_config``.
    """

    def __init__(self, config: ConfigSource = None) -> None:
        self.config = load_indexer_config(config)
        self.table = SymbolTable()
        self._parser = CppCodeParser(self.config)
        self._cancelled = threading.Event()
        self._query: Optional[SymbolQuery] = None
        logger.info(
            "Indexer initialized (max_workers=%d, max_expansion_depth=%d)",
            self.config.max_workers,
            self.config.max_expansion_depth,
        )

    # -- control ------------------------------------------------------------

    def cancel(self) -> None:
        """Stop scheduling units; results not yet merged are discarded."""
        logger.info("Indexing cancelled")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return self.table.diagnostics.to_list()

    def _check_open(self) -> None:
        if self.table.sealed:
            raise SealedTableError("Index already finalized")

    # -- indexing -----------------------------------------------------------

    def index_unit(self, unit_id: str, text: str) -> UnitResult:
        """Parse one unit in-process and merge it.

        Args:
            unit_id: Unit identifier (file path).
            text: Fully resolved source text.

        Returns:
            UnitResult: The unit's pipeline result.

        Raises:
            InvalidUnitError: If the unit id or text is malformed.
            SealedTableError: If the index was already finalized.
        """
        self._check_open()
        result = self._parser.parse_unit(unit_id, text)
        self.table.merge(result)
        return result

    def index_units(self, units: UnitSource, progress: Optional[ProgressCallback] = None) -> int:
        """Parse a batch of units and merge them in submission order.

        Malformed units are reported as InvalidUnit diagnostics and skipped.
        After ``cancel()`` no further unit is merged.

        Args:
            units: Mapping of unit id to text, or ``(unit_id, text)`` pairs.
            progress: Called with each result right after it is merged.

        Returns:
            int: Number of units merged.

        Raises:
            SealedTableError: If the index was already finalized.
        """
        self._check_open()
        pairs = list(units.items()) if isinstance(units, Mapping) else list(units)
        logger.info("Indexing %d units", len(pairs))

        merged = 0
        with UnitParserPool(self.config) as pool:
            for unit_id, outcome in self._results(pairs, pool):
                if self.cancelled:
                    break
                if isinstance(outcome, InvalidUnitError):
                    logger.warning("Skipping invalid unit %r: %s", unit_id, outcome)
                    self.table.diagnostics.report(DiagnosticKind.INVALID_UNIT, str(outcome))
                    continue
                if self.table.merge(outcome):
                    merged += 1
                if progress is not None:
                    progress(outcome)

        logger.info("Merged %d of %d units", merged, len(pairs))
        return merged

    def _results(
        self, pairs: List[Tuple[str, str]], pool: UnitParserPool
    ) -> Iterator[Tuple[str, Union[UnitResult, InvalidUnitError]]]:
        """Yield each unit's result or validation error in submission order."""
        if pool.in_process:
            for unit_id, text in pairs:
                if self.cancelled:
                    return
                try:
                    yield unit_id, self._parser.parse_unit(unit_id, text)
                except InvalidUnitError as exc:
                    yield unit_id, exc
            return

        submitted: List[Tuple[str, Optional[Future], Optional[InvalidUnitError]]] = []
        for unit_id, text in pairs:
            if self.cancelled:
                break
            try:
                BaseCodeParser.validate_unit(unit_id, text)
            except InvalidUnitError as exc:
                submitted.append((unit_id, None, exc))
                continue
            submitted.append((unit_id, pool.submit(unit_id, text), None))

        for position, (unit_id, future, error) in enumerate(submitted):
            if self.cancelled:
                for _, pending, _ in submitted[position:]:
                    if pending is not None:
                        pending.cancel()
                pool.shutdown(wait=False, cancel_futures=True)
                return
            if future is None:
                yield unit_id, error
                continue
            try:
                yield unit_id, future.result()
            except InvalidUnitError as exc:
                yield unit_id, exc
            except CancelledError:
                logger.debug("Unit %s was cancelled before it ran", unit_id)

    # -- resolution ---------------------------------------------------------

    def finalize(self) -> SymbolQuery:
        """Resolve inheritance, overrides and references, then seal.

        Calling it again returns the same query object.

        Returns:
            SymbolQuery: Read-only view of the finished index.
        """
        if self._query is not None:
            return self._query

        logger.info("Finalizing index of %d symbols", len(self.table))
        HierarchyResolver(self.table, self.config.implicit_overrides).resolve()
        if self.config.record_references:
            ReferenceResolver(self.table).resolve()
        self.table.seal()
        self._query = SymbolQuery(self.table)
        logger.info("Index finalized with %d diagnostics", len(self.table.diagnostics))
        return self._query
