"""
Relevance Index - Rank resolved topics against code or text

Build: every resolvable topic becomes one BM25F document with five
weighted fields (title x2, constructs x3, keywords x2, tags x1.5,
content x1). Topics without relevance_signals ("legacy") are indexed
with empty construct/keyword fields so they stay searchable.

Query: a code snippet is reduced to its detected constructs plus its
declared object type; snippets with neither fall back to their first
50 tokens. Raw BM25 scores are normalized against the best surviving
hit of the batch, so the top result is always 1.0.

Concurrency: the index is an immutable IndexSnapshot. build() makes a
new snapshot and swaps it in under a lock; a query grabs the current
snapshot once and never sees a half-built index. A failed build keeps
the previous snapshot.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Mapping, Protocol

from ..core.patterns import (
    CodeCharacteristics,
    ConstructLibrary,
    DEFAULT_LIBRARY,
    extract_code_characteristics,
)
from ..core.resolver import ResolutionResult
from ..core.tokenizer import tokenize_terms
from ..core.topic import RelevanceSignals, Topic
from .bm25 import FieldedBM25

logger = logging.getLogger(__name__)


DEFAULT_FIELD_WEIGHTS: Dict[str, float] = {
    "title": 2.0,
    "constructs": 3.0,
    "keywords": 2.0,
    "tags": 1.5,
    "content": 1.0,
}
CONTENT_EXCERPT_LENGTH = 500
FALLBACK_TOKEN_COUNT = 50
# Candidates fetched per requested result, to leave room for filtering
CANDIDATE_FACTOR = 2
# Legacy topics report at most this many detected constructs
LEGACY_SIGNAL_COUNT = 5


class IndexBuildError(Exception):
    """The index could not be built at all."""


class TopicSource(Protocol):
    def get_all_topic_ids(self) -> List[str]: ...

    def resolve(self, topic_id: str) -> Optional[ResolutionResult]: ...


@dataclass(frozen=True)
class TopicMetadata:
    """Per-topic data kept beside the index for filtering and enrichment."""
    title: str
    domain: str
    domains: tuple = ()
    tags: tuple = ()
    difficulty: Optional[str] = None
    category: Optional[str] = None
    severity: Optional[str] = None
    pattern_type: Optional[str] = None
    applicable_object_types: tuple = ()
    relevance_threshold: Optional[float] = None
    relevance_signals: Optional[RelevanceSignals] = None

    @property
    def is_legacy(self) -> bool:
        return self.relevance_signals is None

    @classmethod
    def from_topic(cls, topic: Topic) -> 'TopicMetadata':
        return cls(
            title=topic.title,
            domain=topic.primary_domain,
            domains=tuple(d.lower() for d in topic.domain),
            tags=tuple(t.lower() for t in topic.tags),
            difficulty=topic.difficulty.value if topic.difficulty else None,
            category=topic.category,
            severity=topic.severity,
            pattern_type=topic.pattern_type.value if topic.pattern_type else None,
            applicable_object_types=tuple(topic.applicable_object_types),
            relevance_threshold=topic.relevance_threshold,
            relevance_signals=topic.relevance_signals,
        )


@dataclass(frozen=True)
class IndexSnapshot:
    """A fully built index. Never mutated after construction."""
    engine: FieldedBM25
    metadata: Mapping[str, TopicMetadata]
    built_at: datetime
    build_time_ms: float

    @property
    def legacy_count(self) -> int:
        return sum(1 for m in self.metadata.values() if m.is_legacy)


@dataclass
class SearchOptions:
    """Caller options for a relevance query."""
    limit: int = 10
    min_score: float = 0.3
    object_type: Optional[str] = None
    category: Optional[str] = None
    domain: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    difficulty: Optional[str] = None
    include_legacy_topics: bool = True


@dataclass
class RelevanceMatch:
    """One ranked topic."""
    topic_id: str
    title: str
    relevance_score: float
    matched_signals: List[str] = field(default_factory=list)
    domain: str = "unknown"
    category: Optional[str] = None
    severity: Optional[str] = None
    pattern_type: Optional[str] = None
    applicable_object_types: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "title": self.title,
            "relevance_score": round(self.relevance_score, 4),
            "matched_signals": list(self.matched_signals),
            "domain": self.domain,
            "category": self.category,
            "severity": self.severity,
            "pattern_type": self.pattern_type,
            "applicable_object_types": list(self.applicable_object_types),
        }


@dataclass
class IndexStatistics:
    total_topics: int = 0
    legacy_topics: int = 0
    v2_topics: int = 0
    vocabulary_size: int = 0
    built_at: Optional[datetime] = None
    build_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_topics": self.total_topics,
            "legacy_topics": self.legacy_topics,
            "v2_topics": self.v2_topics,
            "vocabulary_size": self.vocabulary_size,
            "built_at": self.built_at.isoformat() if self.built_at else None,
            "build_time_ms": round(self.build_time_ms, 2),
        }


def extract_content_summary(content: str, max_length: int = CONTENT_EXCERPT_LENGTH) -> str:
    """Strip heading markers, bold and backticks, then truncate."""
    text = re.sub(r'^#+\s+', '', content or "", flags=re.MULTILINE)
    text = text.replace('**', '').replace('`', '')
    return text[:max_length]


def topic_document(topic: Topic, content_excerpt: int = CONTENT_EXCERPT_LENGTH) -> Dict[str, str]:
    """Project a topic onto the indexed fields. Every field is present."""
    signals = topic.relevance_signals
    return {
        "title": topic.title or "",
        "tags": " ".join(topic.tags),
        "content": extract_content_summary(topic.content, content_excerpt),
        "constructs": " ".join(signals.constructs) if signals else "",
        "keywords": " ".join(signals.keyword_terms()) if signals else "",
    }


class RelevanceIndex:
    """
    Weighted BM25 index over the resolved topic set.

    Args:
        topics: Anything with get_all_topic_ids() and resolve(id)
        field_weights: Field -> weight (default: title 2, constructs 3,
            keywords 2, tags 1.5, content 1)
        content_excerpt: Characters of body text indexed per topic
        library: Construct library for snippet analysis
    """

    def __init__(
        self,
        topics: TopicSource,
        field_weights: Optional[Dict[str, float]] = None,
        content_excerpt: int = CONTENT_EXCERPT_LENGTH,
        library: Optional[ConstructLibrary] = None,
        k1: float = 1.2,
        b: float = 0.75
    ):
        self.topics = topics
        self.field_weights = dict(field_weights or DEFAULT_FIELD_WEIGHTS)
        self.content_excerpt = content_excerpt
        self.library = library or DEFAULT_LIBRARY
        self.k1 = k1
        self.b = b
        self._snapshot: Optional[IndexSnapshot] = None
        self._swap_lock = threading.Lock()
        self._build_lock = threading.Lock()

    @property
    def is_built(self) -> bool:
        return self._snapshot is not None

    def build(self) -> IndexStatistics:
        """
        Build a fresh snapshot and swap it in.

        Concurrent calls are serialized. On failure the previous
        snapshot stays current.

        Raises:
            IndexBuildError: The topic source failed
        """
        with self._build_lock:
            snapshot = self._build_snapshot()
            with self._swap_lock:
                self._snapshot = snapshot
            logger.info(
                "Indexed %d topics (%d legacy) in %.1fms",
                len(snapshot.metadata), snapshot.legacy_count, snapshot.build_time_ms
            )
            return self._statistics(snapshot)

    rebuild = build

    def _build_snapshot(self) -> IndexSnapshot:
        started = time.perf_counter()
        engine = FieldedBM25(self.field_weights, k1=self.k1, b=self.b)
        metadata: Dict[str, TopicMetadata] = {}

        try:
            topic_ids = self.topics.get_all_topic_ids()
            for topic_id in topic_ids:
                resolution = self.topics.resolve(topic_id)
                if resolution is None:
                    continue
                topic = resolution.topic
                engine.add_document(topic_id, topic_document(topic, self.content_excerpt))
                metadata[topic_id] = TopicMetadata.from_topic(topic)
            engine.consolidate()
        except Exception as e:
            logger.error("Index build failed: %s", e)
            raise IndexBuildError(f"Index build failed: {e}") from e

        return IndexSnapshot(
            engine=engine,
            metadata=metadata,
            built_at=datetime.now(timezone.utc),
            build_time_ms=(time.perf_counter() - started) * 1000,
        )

    def _current(self) -> IndexSnapshot:
        """Current snapshot, building one on first use."""
        with self._swap_lock:
            snapshot = self._snapshot
        if snapshot is None:
            self._ensure_built()
            with self._swap_lock:
                snapshot = self._snapshot
        return snapshot

    def _ensure_built(self) -> None:
        with self._build_lock:
            if self._snapshot is not None:
                return
        self.build()

    def extract_code_characteristics(self, code: str) -> CodeCharacteristics:
        return extract_code_characteristics(code, self.library)

    @staticmethod
    def build_query(characteristics: CodeCharacteristics) -> str:
        """Constructs plus object type; else the first 50 snippet tokens."""
        parts = list(characteristics.constructs)
        if characteristics.object_type:
            parts.append(characteristics.object_type)
        if not parts:
            parts = characteristics.tokens[:FALLBACK_TOKEN_COUNT]
        return " ".join(parts)

    def find_relevant_topics(
        self,
        code: str,
        options: Optional[SearchOptions] = None,
        **overrides
    ) -> List[RelevanceMatch]:
        """
        Rank topics for a code snippet (or free text).

        Args:
            code: Source snippet; text without constructs is matched by its tokens
            options: SearchOptions; keyword overrides replace individual fields

        Returns:
            Matches sorted by normalized score, best first, at most limit
        """
        options = _merge_options(options, overrides)
        characteristics = self.extract_code_characteristics(code)
        query = self.build_query(characteristics)
        detected = {c.lower() for c in characteristics.constructs}

        def signals_for(meta: TopicMetadata) -> List[str]:
            if meta.relevance_signals is None:
                return list(characteristics.constructs[:LEGACY_SIGNAL_COUNT])
            return [c for c in meta.relevance_signals.constructs if c.lower() in detected]

        return self._rank(query, options, signals_for)

    def search(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        **overrides
    ) -> List[RelevanceMatch]:
        """
        Rank topics for a plain-text query, without construct detection.

        An empty query with a domain or tags filter searches for those terms.
        """
        options = _merge_options(options, overrides)
        if not query.strip():
            query = " ".join(filter(None, [options.domain, *options.tags]))
        query_terms = set(tokenize_terms(query))

        def signals_for(meta: TopicMetadata) -> List[str]:
            if meta.relevance_signals is None:
                return []
            candidates = meta.relevance_signals.constructs + meta.relevance_signals.keywords
            return [s for s in candidates if set(tokenize_terms(s)) & query_terms]

        return self._rank(" ".join(tokenize_terms(query)), options, signals_for)

    def _rank(self, query: str, options: SearchOptions, signals_for) -> List[RelevanceMatch]:
        if not query or options.limit <= 0:
            return []

        snapshot = self._current()
        logger.debug("Relevance query: %r", query)
        raw_results = snapshot.engine.search(query, options.limit * CANDIDATE_FACTOR)

        object_type = options.object_type.lower() if options.object_type else None
        domain = options.domain.lower() if options.domain else None
        tags = {tag.lower() for tag in options.tags}
        difficulty = options.difficulty.lower() if options.difficulty else None
        candidates = []
        for topic_id, raw_score in raw_results:
            meta = snapshot.metadata.get(topic_id)
            if meta is None:
                continue
            if not options.include_legacy_topics and meta.is_legacy:
                continue
            if object_type and meta.applicable_object_types and object_type not in meta.applicable_object_types:
                continue
            if options.category and meta.category != options.category:
                continue
            if domain and domain not in meta.domains:
                continue
            if not tags.issubset(meta.tags):
                continue
            if difficulty and meta.difficulty != difficulty:
                continue
            candidates.append((topic_id, raw_score, meta))

        if not candidates:
            return []
        top_score = candidates[0][1]

        matches: List[RelevanceMatch] = []
        for topic_id, raw_score, meta in candidates:
            normalized = min(1.0, raw_score / top_score) if top_score > 0 else 0.0
            threshold = meta.relevance_threshold if meta.relevance_threshold is not None else options.min_score
            if normalized < threshold:
                continue
            matches.append(RelevanceMatch(
                topic_id=topic_id,
                title=meta.title,
                relevance_score=normalized,
                matched_signals=signals_for(meta),
                domain=meta.domain,
                category=meta.category,
                severity=meta.severity,
                pattern_type=meta.pattern_type,
                applicable_object_types=list(meta.applicable_object_types),
            ))

        matches.sort(key=lambda m: -m.relevance_score)
        return matches[:options.limit]

    def get_statistics(self) -> IndexStatistics:
        with self._swap_lock:
            snapshot = self._snapshot
        if snapshot is None:
            return IndexStatistics()
        return self._statistics(snapshot)

    @staticmethod
    def _statistics(snapshot: IndexSnapshot) -> IndexStatistics:
        legacy = snapshot.legacy_count
        return IndexStatistics(
            total_topics=len(snapshot.metadata),
            legacy_topics=legacy,
            v2_topics=len(snapshot.metadata) - legacy,
            vocabulary_size=snapshot.engine.vocabulary_size,
            built_at=snapshot.built_at,
            build_time_ms=snapshot.build_time_ms,
        )


def _merge_options(options: Optional[SearchOptions], overrides: Dict[str, Any]) -> SearchOptions:
    base = options or SearchOptions()
    if not overrides:
        return base
    values = dict(base.__dict__)
    for key, value in overrides.items():
        if key not in values:
            raise TypeError(f"Unknown search option: {key}")
        values[key] = value
    return SearchOptions(**values)
