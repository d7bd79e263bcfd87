"""
Topic - In-memory representation of a knowledge document

A topic is a markdown file with a YAML frontmatter header:

    ---
    title: FindSet vs FindFirst
    domain: performance
    difficulty: intermediate
    tags: [records, loops]
    relevance_signals:
      constructs: [FindSet, Next]
    ---
    Body in markdown...

The topic ID comes from the file path relative to the topic root
("performance/findset-vs-findfirst"), never from the frontmatter.
The same ID may appear in several layers; that is how overrides work.

Unknown frontmatter keys are preserved in Topic.extra and survive
a round trip through Topic.frontmatter().
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List

import yaml


FRONTMATTER_PATTERN = re.compile(r'^---\s*\n([\s\S]*?)\n---\s*\n([\s\S]*)$')

# Frontmatter keys mapped onto Topic attributes (everything else -> extra)
KNOWN_KEYS = (
    "title", "domain", "difficulty", "tags", "prerequisites",
    "related_topics", "samples", "relevance_signals", "category",
    "severity", "pattern_type", "applicable_object_types",
    "relevance_threshold",
)


class TopicParseError(ValueError):
    """A topic file could not be parsed."""


class Difficulty(Enum):
    """Ordinal difficulty levels."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        return list(Difficulty).index(self)

    @classmethod
    def parse(cls, value: Any) -> Optional['Difficulty']:
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class PatternType(Enum):
    """Whether a topic describes a good pattern, an anti-pattern, or neither."""
    GOOD = "good"
    BAD = "bad"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> Optional['PatternType']:
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


def as_list(value: Any) -> List[str]:
    """Normalize a scalar-or-list frontmatter value to a list of strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


@dataclass
class RelevanceSignals:
    """Authored signals telling the index when a topic applies."""
    constructs: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    anti_pattern_indicators: List[str] = field(default_factory=list)
    positive_pattern_indicators: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RelevanceSignals':
        return cls(
            constructs=as_list(data.get("constructs")),
            keywords=as_list(data.get("keywords")),
            anti_pattern_indicators=as_list(data.get("anti_pattern_indicators")),
            positive_pattern_indicators=as_list(data.get("positive_pattern_indicators")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constructs": list(self.constructs),
            "keywords": list(self.keywords),
            "anti_pattern_indicators": list(self.anti_pattern_indicators),
            "positive_pattern_indicators": list(self.positive_pattern_indicators),
        }

    def keyword_terms(self) -> List[str]:
        """Keywords plus both pattern-indicator lists, as indexed together."""
        return (
            list(self.keywords)
            + list(self.anti_pattern_indicators)
            + list(self.positive_pattern_indicators)
        )


@dataclass
class TopicSample:
    """Companion code file referenced by a topic's `samples` key."""
    file_path: str
    content: str


@dataclass
class Topic:
    """A single addressable knowledge document."""
    id: str
    title: str
    content: str
    domain: List[str] = field(default_factory=list)
    difficulty: Optional[Difficulty] = None
    tags: List[str] = field(default_factory=list)
    prerequisites: List[str] = field(default_factory=list)
    related_topics: List[str] = field(default_factory=list)
    relevance_signals: Optional[RelevanceSignals] = None
    category: Optional[str] = None
    severity: Optional[str] = None
    pattern_type: Optional[PatternType] = None
    applicable_object_types: List[str] = field(default_factory=list)
    relevance_threshold: Optional[float] = None
    samples_path: Optional[str] = None
    samples: Optional[TopicSample] = None
    word_count: int = 0
    last_modified: Optional[datetime] = None
    file_path: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_legacy(self) -> bool:
        """Legacy topics predate authored relevance signals."""
        return self.relevance_signals is None

    @property
    def primary_domain(self) -> str:
        return self.domain[0] if self.domain else "unknown"

    def is_valid(self) -> bool:
        return bool(self.id and self.title and self.domain and self.content.strip())

    def frontmatter(self) -> Dict[str, Any]:
        """Rebuild the frontmatter mapping, including unrecognized keys."""
        data: Dict[str, Any] = dict(self.extra)
        data["title"] = self.title
        if self.domain:
            data["domain"] = self.domain[0] if len(self.domain) == 1 else list(self.domain)
        if self.difficulty:
            data["difficulty"] = self.difficulty.value
        if self.tags:
            data["tags"] = list(self.tags)
        if self.prerequisites:
            data["prerequisites"] = list(self.prerequisites)
        if self.related_topics:
            data["related_topics"] = list(self.related_topics)
        if self.samples_path:
            data["samples"] = self.samples_path
        if self.relevance_signals is not None:
            data["relevance_signals"] = self.relevance_signals.to_dict()
        if self.category:
            data["category"] = self.category
        if self.severity:
            data["severity"] = self.severity
        if self.pattern_type:
            data["pattern_type"] = self.pattern_type.value
        if self.applicable_object_types:
            data["applicable_object_types"] = list(self.applicable_object_types)
        if self.relevance_threshold is not None:
            data["relevance_threshold"] = self.relevance_threshold
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "domain": list(self.domain),
            "difficulty": self.difficulty.value if self.difficulty else None,
            "tags": list(self.tags),
            "prerequisites": list(self.prerequisites),
            "related_topics": list(self.related_topics),
            "category": self.category,
            "severity": self.severity,
            "pattern_type": self.pattern_type.value if self.pattern_type else None,
            "applicable_object_types": list(self.applicable_object_types),
            "relevance_threshold": self.relevance_threshold,
            "relevance_signals": self.relevance_signals.to_dict() if self.relevance_signals else None,
            "samples": self.samples.file_path if self.samples else None,
            "word_count": self.word_count,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "content": self.content,
        }


def split_frontmatter(text: str) -> Optional[tuple]:
    """
    Split a document into (frontmatter mapping, body).

    Returns None when the document has no frontmatter block.
    Raises TopicParseError when the block is not a YAML mapping.
    """
    normalized = text.replace('\r\n', '\n')
    match = FRONTMATTER_PATTERN.match(normalized)
    if not match:
        return None

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise TopicParseError(f"Invalid YAML frontmatter: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise TopicParseError("Frontmatter must be a mapping")
    return data, match.group(2)


def topic_id_from_path(file_path: Path, root: Path, lowercase: bool = False) -> str:
    """Derive a topic ID: path relative to root, '/'-separated, no .md suffix."""
    relative = Path(file_path).relative_to(root).with_suffix('')
    topic_id = relative.as_posix()
    return topic_id.lower() if lowercase else topic_id


def _parse_threshold(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        threshold = float(value)
    except (TypeError, ValueError):
        raise TopicParseError(f"relevance_threshold must be a number, got {value!r}")
    if not 0.0 <= threshold <= 1.0:
        raise TopicParseError(f"relevance_threshold must be within 0..1, got {threshold}")
    return threshold


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def parse_topic(topic_id: str, text: str, file_path: Optional[str] = None) -> Topic:
    """
    Parse a topic document.

    Args:
        topic_id: ID derived from the file location
        text: Raw file content
        file_path: Where the text came from (for samples and diagnostics)

    Raises:
        TopicParseError: Missing or malformed frontmatter
    """
    parts = split_frontmatter(text)
    if parts is None:
        raise TopicParseError("Missing frontmatter block")
    data, body = parts

    signals = data.get("relevance_signals")
    if signals is not None and not isinstance(signals, dict):
        raise TopicParseError("relevance_signals must be a mapping")

    samples = data.get("samples")
    if samples is not None and not isinstance(samples, str):
        raise TopicParseError(f"samples must be a file path, got {samples!r}")

    return Topic(
        id=topic_id,
        title=str(data.get("title") or topic_id.replace('-', ' ')),
        content=body,
        domain=as_list(data.get("domain")),
        difficulty=Difficulty.parse(data.get("difficulty")),
        tags=as_list(data.get("tags")),
        prerequisites=as_list(data.get("prerequisites")),
        related_topics=as_list(data.get("related_topics")),
        relevance_signals=RelevanceSignals.from_dict(signals) if signals is not None else None,
        category=_optional_str(data.get("category")),
        severity=_optional_str(data.get("severity")),
        pattern_type=PatternType.parse(data.get("pattern_type")),
        applicable_object_types=[t.lower() for t in as_list(data.get("applicable_object_types"))],
        relevance_threshold=_parse_threshold(data.get("relevance_threshold")),
        samples_path=samples,
        word_count=len(body.split()),
        file_path=file_path,
        extra={k: v for k, v in data.items() if k not in KNOWN_KEYS},
    )


def load_topic_file(file_path: Path, topic_id: str) -> Topic:
    """
    Load a topic from disk, attaching its companion sample if present.

    The samples path is resolved relative to the topic file. A missing
    sample file is tolerated.
    """
    file_path = Path(file_path)
    text = file_path.read_text(encoding='utf-8')
    topic = parse_topic(topic_id, text, file_path=str(file_path))

    stat = file_path.stat()
    topic.last_modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

    if topic.samples_path:
        sample_path = file_path.parent / topic.samples_path
        if sample_path.is_file():
            topic.samples = TopicSample(
                file_path=str(sample_path),
                content=sample_path.read_text(encoding='utf-8'),
            )

    return topic
