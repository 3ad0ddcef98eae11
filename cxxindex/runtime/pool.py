"""Process pool for parallel per-unit parsing.

Runs the per-unit pipeline (lex, preprocess, parse, scan) on worker
processes. Workers keep a process-level parser cache keyed by the serialized
configuration, so predefined macros are only built once per process. With a
single worker the pipeline runs in the calling process and no executor is
started.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from concurrent.futures import Future, ProcessPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cxxindex.config.schema import IndexerConfig
from cxxindex.parsers.base import UnitResult
from cxxindex.parsers.cpp.code_parser import CppCodeParser

logger = logging.getLogger("cxxindex.runtime.pool")

# =============================================================================
# Process-level Parser Cache
# =============================================================================

# Parser instances per worker process, keyed by serialized IndexerConfig.
_CODE_PARSER_CACHE: Dict[str, CppCodeParser] = {}


def clear_parser_cache() -> None:
    """Drop every cached parser of the current process."""
    count = len(_CODE_PARSER_CACHE)
    _CODE_PARSER_CACHE.clear()
    if count > 0:
        logger.debug("[PID %d] Cleared %d parser cache entries", os.getpid(), count)


def _get_code_parser(config_json: str) -> CppCodeParser:
    """Get or create the cached parser for a configuration.

    Args:
        config_json: ``IndexerConfig`` serialized with ``model_dump_json``.

    Returns:
        CppCodeParser instance.
    """
    parser = _CODE_PARSER_CACHE.get(config_json)
    if parser is None:
        parser = CppCodeParser(IndexerConfig.model_validate_json(config_json))
        _CODE_PARSER_CACHE[config_json] = parser
        logger.debug("[PID %d] Cached code parser", os.getpid())
    return parser


def _unit_worker_dispatch(task_data: Tuple[str, str, str]) -> UnitResult:
    """Worker process entry point.

    Must be a top-level function to be picklable. ``InvalidUnitError``
    propagates to the caller through the future.

    Args:
        task_data: ``(unit_id, text, config_json)``.

    Returns:
        UnitResult: Result of the unit's pipeline.
    """
    unit_id, text, config_json = task_data
    return _get_code_parser(config_json).parse_unit(unit_id, text)


class UnitParserPool:
    """Pool that runs per-unit pipelines in parallel.

    Usage:
        with UnitParserPool(config) as pool:
            futures = pool.submit_batch(units)
            results = [future.result() for _, future in futures]

    Args:
        config: Indexer configuration; ``max_workers`` sizes the pool.
    """

    def __init__(self, config: Optional[IndexerConfig] = None) -> None:
        self.config = config or IndexerConfig()
        self.max_workers = self.config.max_workers
        self._config_json = self.config.model_dump_json()
        self._executor: Optional[ProcessPoolExecutor] = None
        logger.info("UnitParserPool initialized with %d max workers", self.max_workers)

    @property
    def in_process(self) -> bool:
        return self.max_workers <= 1

    def _create_executor(self) -> ProcessPoolExecutor:
        """Create a ProcessPoolExecutor with a POSIX-friendly start method."""
        executor_kwargs: Dict[str, Any] = {"max_workers": self.max_workers}
        start_method = "default"
        if os.name == "nt":
            executor_kwargs["mp_context"] = multiprocessing.get_context("spawn")
            start_method = "spawn"
        else:
            try:
                executor_kwargs["mp_context"] = multiprocessing.get_context("fork")
                start_method = "fork"
            except (ValueError, RuntimeError):
                start_method = multiprocessing.get_start_method(allow_none=True) or "default"

        executor = ProcessPoolExecutor(**executor_kwargs)
        logger.info(
            "Process pool executor started with %d workers (start_method=%s)",
            self.max_workers,
            start_method,
        )
        return executor

    def _ensure_executor(self) -> ProcessPoolExecutor:
        if self._executor is None:
            self._executor = self._create_executor()
        return self._executor

    def submit(self, unit_id: str, text: str) -> Future:
        """Submit one unit for parsing.

        In-process pools run the unit immediately and return a completed
        future, carrying ``InvalidUnitError`` as its exception if raised.

        Args:
            unit_id: Unit identifier.
            text: Source text.

        Returns:
            Future: Future resolving to the unit's ``UnitResult``.
        """
        task = (unit_id, text, self._config_json)
        if self.in_process:
            future: Future = Future()
            try:
                future.set_result(_unit_worker_dispatch(task))
            except ValueError as exc:
                future.set_exception(exc)
            return future

        future = self._ensure_executor().submit(_unit_worker_dispatch, task)
        logger.debug("Submitted unit for parsing: %s", unit_id)
        return future

    def submit_batch(self, units: Iterable[Tuple[str, str]]) -> List[Tuple[str, Future]]:
        """Submit several units.

        Args:
            units: ``(unit_id, text)`` pairs.

        Returns:
            List[Tuple[str, Future]]: ``(unit_id, future)`` in submission order.
        """
        futures = [(unit_id, self.submit(unit_id, text)) for unit_id, text in units]
        logger.info("Submitted batch of %d units for parsing", len(futures))
        return futures

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        """Shut down the executor, if one was started.

        Args:
            wait: Whether to wait for running tasks.
            cancel_futures: Cancel tasks that have not started yet.
        """
        if self._executor is not None:
            logger.info("Shutting down unit parser pool (wait=%s)", wait)
            self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)
            self._executor = None

    def __enter__(self) -> "UnitParserPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)
