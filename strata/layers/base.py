"""
KnowledgeLayer - One prioritized source of topics and specialists

A layer pairs its configuration with a source variant (embedded, local,
git, unsupported). The source only knows how to make a directory of
markdown files available; the layer scans that directory, keeps the
parsed topics, and answers lookups.

Lifecycle: constructed -> initialize() -> queried -> dispose().

initialize() never raises. A bad file is recorded in the load result
and skipped; an unavailable source (clone failed, missing bundle)
yields success=False and the layer simply takes no part in resolution.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, List

import orjson

from ..config import LayerConfig, LayerType
from ..core.specialist import Specialist, load_specialist_file
from ..core.topic import Topic, TopicParseError, load_topic_file, topic_id_from_path

logger = logging.getLogger(__name__)


TOPICS_DIR = "domains"
SPECIALISTS_DIR = "specialists"
# Directory names never scanned for topics
EXCLUDED_DIRS = frozenset({"samples", SPECIALISTS_DIR, ".git", "node_modules"})


class LayerLoadError(Exception):
    """A layer's source could not be made available."""


@dataclass
class LayerLoadResult:
    """Outcome of initializing one layer."""
    layer_name: str
    success: bool
    topics_loaded: int = 0
    specialists_loaded: int = 0
    errors: List[str] = field(default_factory=list)
    load_time_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "layer_name": self.layer_name,
            "success": self.success,
            "topics_loaded": self.topics_loaded,
            "specialists_loaded": self.specialists_loaded,
            "errors": list(self.errors),
            "load_time_ms": round(self.load_time_ms, 2),
        }


@dataclass
class LayerStatistics:
    """Observability snapshot for one layer."""
    name: str
    priority: int
    layer_type: str
    enabled: bool
    topic_count: int = 0
    specialist_count: int = 0
    last_loaded: Optional[datetime] = None
    load_time_ms: float = 0.0
    memory_bytes: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "priority": self.priority,
            "layer_type": self.layer_type,
            "enabled": self.enabled,
            "topic_count": self.topic_count,
            "specialist_count": self.specialist_count,
            "last_loaded": self.last_loaded.isoformat() if self.last_loaded else None,
            "load_time_ms": round(self.load_time_ms, 2),
            "memory_bytes": self.memory_bytes,
        }


def _is_excluded(file_path: Path, root: Path) -> bool:
    parts = file_path.relative_to(root).parts[:-1]
    return any(part in EXCLUDED_DIRS for part in parts)


class KnowledgeLayer:
    """
    A loaded layer.

    Args:
        config: Layer configuration (name, priority, enabled, source fields)
        source: Source variant that materializes the content directory
    """

    def __init__(self, config: LayerConfig, source):
        self.config = config
        self.source = source
        self._topics: Dict[str, Topic] = {}
        self._topic_files: Dict[str, Path] = {}
        self._specialists: Dict[str, Specialist] = {}
        self._loaded = False
        self._last_loaded: Optional[datetime] = None
        self._load_time_ms = 0.0
        self._load_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"KnowledgeLayer(name={self.name!r}, priority={self.priority}, type={self.layer_type.value})"

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def priority(self) -> int:
        return self.config.priority

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def layer_type(self) -> LayerType:
        return self.config.type

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def initialize(self) -> LayerLoadResult:
        """Load topics and specialists. Never raises. Overlapping calls run one at a time."""
        with self._load_lock:
            return self._initialize()

    def _initialize(self) -> LayerLoadResult:
        started = time.perf_counter()
        self._clear()
        logger.info("Loading layer %s (%s, priority %d)", self.name, self.layer_type.value, self.priority)

        try:
            root = self.source.materialize()
        except LayerLoadError as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.warning("Layer %s unavailable: %s", self.name, e)
            return LayerLoadResult(self.name, success=False, errors=[str(e)], load_time_ms=elapsed)

        errors: List[str] = []
        if root is not None:
            self._load_topics(root, errors)
            self._load_specialists(root, errors)

        self._loaded = True
        self._last_loaded = datetime.now(timezone.utc)
        self._load_time_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "Loaded layer %s: %d topics, %d specialists, %d errors in %.1fms",
            self.name, len(self._topics), len(self._specialists), len(errors), self._load_time_ms
        )
        return LayerLoadResult(
            layer_name=self.name,
            success=True,
            topics_loaded=len(self._topics),
            specialists_loaded=len(self._specialists),
            errors=errors,
            load_time_ms=self._load_time_ms,
        )

    def topic_root(self, root: Path) -> Path:
        """domains/ when present, else the content root itself."""
        domains = root / TOPICS_DIR
        return domains if domains.is_dir() else root

    def _load_topics(self, root: Path, errors: List[str]) -> None:
        topic_root = self.topic_root(root)
        for file_path in sorted(topic_root.rglob("*.md")):
            if _is_excluded(file_path, topic_root):
                continue
            topic_id = topic_id_from_path(file_path, topic_root, lowercase=self.source.lowercase_ids)
            relative = file_path.relative_to(topic_root).as_posix()

            if topic_id in self._topics:
                errors.append(f"{relative}: duplicate topic id '{topic_id}'")
                continue

            topic = self._read_topic(file_path, topic_id, relative, errors)
            if topic is not None:
                self._topics[topic_id] = topic
                self._topic_files[topic_id] = file_path

    def _read_topic(self, file_path: Path, topic_id: str, relative: str, errors: List[str]) -> Optional[Topic]:
        try:
            topic = load_topic_file(file_path, topic_id)
        except (TopicParseError, OSError, UnicodeDecodeError) as e:
            errors.append(f"{relative}: {e}")
            logger.warning("Skipping topic %s in layer %s: %s", relative, self.name, e)
            return None
        except Exception as e:
            # A single malformed file never fails the layer
            errors.append(f"{relative}: {e}")
            logger.exception("Unexpected error reading topic %s in layer %s", relative, self.name)
            return None

        if not topic.is_valid():
            errors.append(f"{relative}: topic requires title, domain and content")
            logger.warning("Skipping invalid topic %s in layer %s", relative, self.name)
            return None

        for tag in self.source.extra_tags:
            if tag not in topic.tags:
                topic.tags.append(tag)
        return topic

    def _load_specialists(self, root: Path, errors: List[str]) -> None:
        specialists_dir = root / SPECIALISTS_DIR
        if not specialists_dir.is_dir():
            return
        for file_path in sorted(specialists_dir.glob("*.md")):
            try:
                specialist = load_specialist_file(file_path)
            except (TopicParseError, OSError, UnicodeDecodeError) as e:
                errors.append(f"{SPECIALISTS_DIR}/{file_path.name}: {e}")
                logger.warning("Skipping specialist %s in layer %s: %s", file_path.name, self.name, e)
                continue
            except Exception as e:
                errors.append(f"{SPECIALISTS_DIR}/{file_path.name}: {e}")
                logger.exception("Unexpected error reading specialist %s in layer %s", file_path.name, self.name)
                continue
            specialist.source_layer = self.name
            self._specialists[specialist.specialist_id] = specialist

    def has_topic(self, topic_id: str) -> bool:
        return topic_id in self._topics

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        """Look up a topic. Live sources re-read files changed on disk."""
        topic = self._topics.get(topic_id)
        if topic is None or not self.source.live:
            return topic
        return self._refresh(topic_id, topic)

    def _refresh(self, topic_id: str, topic: Topic) -> Optional[Topic]:
        file_path = self._topic_files[topic_id]
        try:
            mtime = datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc)
        except FileNotFoundError:
            logger.info("Topic %s was removed from layer %s", topic_id, self.name)
            del self._topics[topic_id]
            del self._topic_files[topic_id]
            return None

        if topic.last_modified is not None and mtime <= topic.last_modified:
            return topic

        errors: List[str] = []
        fresh = self._read_topic(file_path, topic_id, file_path.name, errors)
        if fresh is None:
            # Keep serving the last good version
            return topic
        self._topics[topic_id] = fresh
        return fresh

    def get_topic_ids(self) -> List[str]:
        return list(self._topics)

    def get_specialists(self) -> List[Specialist]:
        return list(self._specialists.values())

    def get_specialist(self, specialist_id: str) -> Optional[Specialist]:
        return self._specialists.get(specialist_id)

    def search_topics(self, query: str, limit: int = 50) -> List[Topic]:
        """
        Naive layer-local search: case-insensitive substring over
        title, domain, tags and content.
        """
        needle = (query or "").lower().strip()
        if not needle:
            return []

        results = []
        for topic_id in sorted(self._topics):
            topic = self._topics[topic_id]
            haystacks = [topic.title, topic.content] + topic.domain + topic.tags
            if any(needle in text.lower() for text in haystacks):
                results.append(topic)
                if len(results) >= limit:
                    break
        return results

    def get_statistics(self) -> LayerStatistics:
        memory = sum(len(orjson.dumps(topic.to_dict())) for topic in self._topics.values())
        memory += sum(len(orjson.dumps(s.to_dict())) for s in self._specialists.values())
        return LayerStatistics(
            name=self.name,
            priority=self.priority,
            layer_type=self.layer_type.value,
            enabled=self.enabled,
            topic_count=len(self._topics),
            specialist_count=len(self._specialists),
            last_loaded=self._last_loaded,
            load_time_ms=self._load_time_ms,
            memory_bytes=memory,
        )

    def _clear(self) -> None:
        self._topics.clear()
        self._topic_files.clear()
        self._specialists.clear()
        self._loaded = False

    def dispose(self) -> None:
        """Release loaded content. The layer can be initialized again."""
        self._clear()
        self.source.dispose()
