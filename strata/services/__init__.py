"""
Services - Query layer for Strata

- BM25: Field-weighted ranking engine
- Relevance: Topic index over the resolved knowledge set
- Router: Specialist suggestions for a request
- Knowledge: Facade wiring layers, resolution, index and router
"""

from .bm25 import FieldedBM25
from .relevance import (
    RelevanceIndex, RelevanceMatch, SearchOptions, IndexStatistics, IndexBuildError,
)
from .router import (
    SpecialistRouter, SpecialistSuggestion, DiscoveryContext, MatchType, format_suggestions,
)
from .knowledge import KnowledgeService, ServiceStatistics

__all__ = [
    "FieldedBM25",
    "RelevanceIndex", "RelevanceMatch", "SearchOptions", "IndexStatistics", "IndexBuildError",
    "SpecialistRouter", "SpecialistSuggestion", "DiscoveryContext", "MatchType", "format_suggestions",
    "KnowledgeService", "ServiceStatistics",
]
