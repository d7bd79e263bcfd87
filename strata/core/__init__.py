"""
Core - Data layer for Strata

Contains the foundational data structures:
- Topic: Markdown knowledge article with YAML frontmatter
- Specialist: Persona profile used for routing
- Patterns: Code construct detection
- Resolver: Priority-based override resolution across layers
- Tokenizer: Term splitting shared by search and routing
"""

from .topic import (
    Topic, TopicSample, RelevanceSignals, Difficulty, PatternType,
    TopicParseError, parse_topic, load_topic_file, split_frontmatter, topic_id_from_path,
)
from .specialist import (
    Specialist, SpecialistPersona, SpecialistExpertise, SpecialistCollaboration,
    parse_specialist, load_specialist_file,
)
from .patterns import (
    CodeCharacteristics, ConstructLibrary, PatternResult, DEFAULT_LIBRARY,
    compile_pattern, detect_object_type, extract_code_characteristics,
)
from .resolver import LayerResolver, ResolutionResult, OverrideStrategy
from .tokenizer import tokenize_terms, query_tokens, tokenize_name

__all__ = [
    # Topic
    "Topic", "TopicSample", "RelevanceSignals", "Difficulty", "PatternType",
    "TopicParseError", "parse_topic", "load_topic_file", "split_frontmatter", "topic_id_from_path",
    # Specialist
    "Specialist", "SpecialistPersona", "SpecialistExpertise", "SpecialistCollaboration",
    "parse_specialist", "load_specialist_file",
    # Patterns
    "CodeCharacteristics", "ConstructLibrary", "PatternResult", "DEFAULT_LIBRARY",
    "compile_pattern", "detect_object_type", "extract_code_characteristics",
    # Resolver
    "LayerResolver", "ResolutionResult", "OverrideStrategy",
    # Tokenizer
    "tokenize_terms", "query_tokens", "tokenize_name",
]
