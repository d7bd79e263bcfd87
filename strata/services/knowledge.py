"""
KnowledgeService - The layered knowledge subsystem behind one object

Wires the pieces together:

    config -> layers -> LayerLoadPool -> LayerResolver -> RelevanceIndex
                                                      +-> SpecialistRouter

Startup never fails because of a single layer: layers that fail or time
out are reported in the load results and left out of resolution. Only
invalid configuration (ConfigurationError) or a total index-build
failure (IndexBuildError) reaches the caller.

Usage:
    with KnowledgeService.from_project(".") as service:
        service.find_relevant_topics(code)
        service.suggest_specialists(DiscoveryContext(query="slow report"))
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, List, Union

from ..config import Config, ConfigManager, ConfigurationError, validate_config
from ..core.patterns import CodeCharacteristics, DEFAULT_LIBRARY
from ..core.resolver import LayerResolver, ResolutionResult
from ..core.specialist import Specialist
from ..core.topic import Topic
from ..layers import KnowledgeLayer, LayerLoadResult, LayerStatistics, create_layer
from ..orchestrator import LayerLoadPool, LoaderConfig
from .relevance import IndexStatistics, RelevanceIndex, RelevanceMatch, SearchOptions
from .router import DiscoveryContext, SpecialistRouter, SpecialistSuggestion

logger = logging.getLogger(__name__)


@dataclass
class ServiceStatistics:
    """System-wide view: per-layer stats, load outcomes, totals."""
    layers: List[LayerStatistics] = field(default_factory=list)
    load_results: List[LayerLoadResult] = field(default_factory=list)
    total_topics: int = 0
    overridden_topics: int = 0
    total_specialists: int = 0
    index: IndexStatistics = field(default_factory=IndexStatistics)

    def to_dict(self) -> dict:
        return {
            "layers": [layer.to_dict() for layer in self.layers],
            "load_results": [result.to_dict() for result in self.load_results],
            "total_topics": self.total_topics,
            "overridden_topics": self.overridden_topics,
            "total_specialists": self.total_specialists,
            "index": self.index.to_dict(),
        }


class KnowledgeService:
    """
    Loads layers, resolves overrides, and answers relevance queries.

    Args:
        config: Engine configuration (default: built-in defaults)
        loader_config: Layer loading limits (default: from config.performance)
        layers: Pre-built layers, replacing the ones from config.layers

    Raises:
        ConfigurationError: config fails validate_config
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        loader_config: Optional[LoaderConfig] = None,
        layers: Optional[List[KnowledgeLayer]] = None
    ):
        self.config = config or Config()
        report = validate_config(self.config)
        if not report.is_valid:
            raise ConfigurationError(report)
        self._layers: List[KnowledgeLayer] = list(layers) if layers is not None else self._create_layers()
        self._pool = LayerLoadPool(loader_config or LoaderConfig.from_performance(self.config.performance))
        self.resolver = LayerResolver(strategy=self.config.resolution.strategy)
        self.index = RelevanceIndex(
            self.resolver,
            content_excerpt=self.config.search.content_excerpt,
            library=DEFAULT_LIBRARY.with_patterns(self.config.search.extra_constructs),
        )
        self._router: Optional[SpecialistRouter] = None
        self._load_results: List[LayerLoadResult] = []
        self._initialized = False
        self._lock = threading.Lock()

    @classmethod
    def from_project(cls, project_dir: Optional[Path] = None, user_dir: Optional[Path] = None) -> 'KnowledgeService':
        """Build from the config files and environment of a project directory."""
        return cls(ConfigManager(project_dir, user_dir).load())

    def _create_layers(self) -> List[KnowledgeLayer]:
        return [
            create_layer(
                layer_config,
                Path(self.config.cache.cache_dir),
                self.config.cache.git_ttl,
                git_timeout=self.config.performance.load_timeout,
            )
            for layer_config in self.config.layers
        ]

    def __enter__(self) -> 'KnowledgeService':
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # Lifecycle

    def initialize(self) -> List[LayerLoadResult]:
        """Load every enabled layer. Idempotent; never raises for layer failures."""
        with self._lock:
            if not self._initialized:
                self._load()
            return list(self._load_results)

    def _load(self) -> None:
        enabled = [layer for layer in self._layers if layer.enabled]
        results = self._pool.load_all(enabled)
        loaded = [layer for layer, result in zip(enabled, results) if result.success]

        self.resolver.set_layers(loaded)
        self._router = SpecialistRouter(self.resolver.get_specialists(), topic_index=self.index)
        self._load_results = results
        self._initialized = True

        if self.index.is_built:
            # The old snapshot describes the previous layer set
            self.index.build()

        failed = [result.layer_name for result in results if not result.success]
        if failed:
            logger.warning("Layers unavailable: %s", ", ".join(failed))
        logger.info("Knowledge ready: %d of %d layers loaded", len(loaded), len(enabled))

    def reload(self) -> List[LayerLoadResult]:
        """Dispose and reload every layer, then rebuild the index."""
        with self._lock:
            for layer in self._layers:
                layer.dispose()
            self._initialized = False
            self._load()
            results = list(self._load_results)
        if not self.index.is_built:
            self.index.build()
        return results

    def dispose(self) -> None:
        with self._lock:
            for layer in self._layers:
                layer.dispose()
            self.resolver.set_layers([])
            self._router = None
            self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def layers(self) -> List[KnowledgeLayer]:
        """All configured layers, highest priority first."""
        return sorted(self._layers, key=lambda layer: -layer.priority)

    def get_layer(self, name: str) -> Optional[KnowledgeLayer]:
        for layer in self._layers:
            if layer.name == name:
                return layer
        return None

    @property
    def load_results(self) -> List[LayerLoadResult]:
        return list(self._load_results)

    # ------------------------------------------------------------------
    # Resolution

    def resolve_topic(self, topic_id: str) -> Optional[ResolutionResult]:
        """Winning version of a topic with its override trail, or None."""
        self.initialize()
        return self.resolver.resolve(topic_id)

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        resolution = self.resolve_topic(topic_id)
        return resolution.topic if resolution else None

    def get_all_topic_ids(self) -> List[str]:
        self.initialize()
        return self.resolver.get_all_topic_ids()

    def get_overridden_topics(self) -> Dict[str, List[str]]:
        """Topic ID -> names of every layer holding it (winner first)."""
        self.initialize()
        return self.resolver.get_overridden_topics()

    # ------------------------------------------------------------------
    # Relevance

    def default_search_options(self) -> SearchOptions:
        return SearchOptions(
            limit=self.config.search.default_limit,
            min_score=self.config.search.min_score,
        )

    def find_relevant_topics(
        self,
        snippet_or_query: str,
        options: Optional[SearchOptions] = None,
        **overrides
    ) -> List[RelevanceMatch]:
        """Rank topics for a code snippet; free text falls back to its tokens."""
        self.initialize()
        return self.index.find_relevant_topics(snippet_or_query, options or self.default_search_options(), **overrides)

    def search_topics(
        self,
        query: str,
        limit: Optional[int] = None,
        options: Optional[SearchOptions] = None,
        **overrides
    ) -> List[RelevanceMatch]:
        """Rank topics for a plain-text query."""
        self.initialize()
        if limit is not None:
            overrides["limit"] = limit
        return self.index.search(query, options or self.default_search_options(), **overrides)

    def analyze_code(self, code: str) -> CodeCharacteristics:
        return self.index.extract_code_characteristics(code)

    def rebuild_index(self) -> IndexStatistics:
        """Rebuild the relevance index from the current resolution."""
        self.initialize()
        return self.index.build()

    # ------------------------------------------------------------------
    # Specialists

    @property
    def router(self) -> SpecialistRouter:
        self.initialize()
        return self._router

    def get_specialists(self) -> List[Specialist]:
        return list(self.router.specialists)

    def get_specialist(self, specialist_id: str) -> Optional[Specialist]:
        return self.router.get_specialist_by_id(specialist_id)

    def suggest_specialists(
        self,
        context: Union[DiscoveryContext, str, None],
        max_suggestions: int = 3
    ) -> List[SpecialistSuggestion]:
        """Rank specialists for a request (a DiscoveryContext or plain query text)."""
        if not isinstance(context, DiscoveryContext):
            context = DiscoveryContext(query=context)
        return self.router.suggest_specialists(context, max_suggestions)

    def get_best_specialist(self, context: Union[DiscoveryContext, str, None]) -> Optional[SpecialistSuggestion]:
        suggestions = self.suggest_specialists(context, 1)
        return suggestions[0] if suggestions else None

    # ------------------------------------------------------------------
    # Observability

    def get_statistics(self) -> ServiceStatistics:
        self.initialize()
        return ServiceStatistics(
            layers=[layer.get_statistics() for layer in self.layers],
            load_results=list(self._load_results),
            total_topics=len(self.resolver.get_all_topic_ids()),
            overridden_topics=len(self.resolver.get_overridden_topics()),
            total_specialists=len(self._router.specialists) if self._router else 0,
            index=self.index.get_statistics(),
        )
