"""
LayerLoadPool - Load layers concurrently with a per-layer timeout

Layer loading is I/O-bound (file reads, git), so layers initialize on a
ThreadPoolExecutor sized by max_concurrent_loads. Each layer gets
load_timeout seconds from the moment its worker starts it. A layer
that overruns is reported as failed; its thread is left to finish in
the background and its late result is discarded.

Sequential mode (parallel=False) initializes layers one after another
on the calling thread, with no timeout enforcement.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future, wait, FIRST_COMPLETED
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..layers import KnowledgeLayer, LayerLoadResult
from .config import LoaderConfig

logger = logging.getLogger(__name__)


@dataclass
class PoolStats:
    """Statistics for pool observability."""
    completed_loads: int = 0
    failed_loads: int = 0
    timed_out_loads: int = 0
    total_duration_ms: float = 0.0

    @property
    def avg_duration_ms(self) -> float:
        if self.completed_loads == 0:
            return 0.0
        return self.total_duration_ms / self.completed_loads

    def to_dict(self) -> dict:
        return {
            "completed_loads": self.completed_loads,
            "failed_loads": self.failed_loads,
            "timed_out_loads": self.timed_out_loads,
            "avg_duration_ms": round(self.avg_duration_ms, 2),
        }


class LayerLoadPool:
    """
    Runs KnowledgeLayer.initialize() for a batch of layers.

    Results come back in the order the layers were given.
    """

    def __init__(self, config: Optional[LoaderConfig] = None):
        self._config = config or LoaderConfig.from_env()
        self._config.validate()
        self._stats = PoolStats()
        self._lock = threading.Lock()

    @property
    def config(self) -> LoaderConfig:
        return self._config

    def load_all(self, layers: Sequence[KnowledgeLayer]) -> List[LayerLoadResult]:
        if not layers:
            return []
        if not self._config.parallel:
            results = [self._initialize(layer, index, {}) for index, layer in enumerate(layers)]
        else:
            results = self._load_parallel(layers)

        for result in results:
            self._record(result)
        return results

    def _initialize(self, layer: KnowledgeLayer, index: int, started: Dict[int, float]) -> LayerLoadResult:
        started[index] = time.monotonic()
        try:
            return layer.initialize()
        except Exception as e:
            # initialize() reports failures itself; anything else is a bug in a source
            logger.exception("Unexpected error loading layer %s", layer.name)
            return LayerLoadResult(layer.name, success=False, errors=[f"Unexpected error: {e}"])

    def _load_parallel(self, layers: Sequence[KnowledgeLayer]) -> List[LayerLoadResult]:
        timeout = self._config.load_timeout
        started: Dict[int, float] = {}
        results: Dict[int, LayerLoadResult] = {}

        executor = ThreadPoolExecutor(
            max_workers=min(self._config.max_concurrent_loads, len(layers)),
            thread_name_prefix="strata-load-"
        )
        try:
            pending: Dict[Future, int] = {
                executor.submit(self._initialize, layer, index, started): index
                for index, layer in enumerate(layers)
            }
            while pending:
                done, _ = wait(pending, timeout=self._next_deadline(pending, started, timeout),
                               return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    results[index] = future.result()

                now = time.monotonic()
                for future, index in list(pending.items()):
                    began = started.get(index)
                    if began is not None and now - began >= timeout:
                        pending.pop(future)
                        future.cancel()
                        name = layers[index].name
                        logger.warning("Layer %s timed out after %gs", name, timeout)
                        results[index] = LayerLoadResult(
                            name,
                            success=False,
                            errors=[f"timed out after {timeout:g}s"],
                            load_time_ms=timeout * 1000,
                        )
        finally:
            # Overrunning layers finish in the background; git commands carry their own timeout
            executor.shutdown(wait=False)

        return [results[index] for index in range(len(layers))]

    @staticmethod
    def _next_deadline(pending: Dict[Future, int], started: Dict[int, float], timeout: float) -> float:
        """Seconds until the earliest running layer times out."""
        now = time.monotonic()
        deadlines = [
            started[index] + timeout
            for index in pending.values()
            if index in started
        ]
        if not deadlines:
            # Nothing started yet; poll shortly
            return min(timeout, 0.05)
        return max(0.0, min(deadlines) - now)

    def _record(self, result: LayerLoadResult) -> None:
        with self._lock:
            if result.success:
                self._stats.completed_loads += 1
                self._stats.total_duration_ms += result.load_time_ms
            else:
                self._stats.failed_loads += 1
                if any(error.startswith("timed out") for error in result.errors):
                    self._stats.timed_out_loads += 1

    def stats(self) -> PoolStats:
        """Get pool statistics."""
        with self._lock:
            return PoolStats(
                completed_loads=self._stats.completed_loads,
                failed_loads=self._stats.failed_loads,
                timed_out_loads=self._stats.timed_out_loads,
                total_duration_ms=self._stats.total_duration_ms,
            )
