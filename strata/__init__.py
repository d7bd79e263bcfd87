"""
Strata - Layered knowledge resolution and relevance routing

Topics live in prioritized layers (bundled, team git repos, project
overrides). The highest-priority layer wins; the resolved set is indexed
for code-aware search and specialist routing.

Usage:
    strata layers
    strata resolve performance/findset-vs-findfirst
    strata search "filter before findset"
    strata analyze src/Customer.Codeunit.al
    strata suggest "report is slow on large tables"
    strata overrides
"""

__version__ = "0.1.0"

# Core layer (data)
from .core.topic import Topic, RelevanceSignals, Difficulty, PatternType, TopicParseError
from .core.specialist import Specialist
from .core.patterns import CodeCharacteristics, extract_code_characteristics
from .core.resolver import LayerResolver, ResolutionResult, OverrideStrategy

# Config
from .config import Config, ConfigManager, ConfigurationError, LayerConfig, LayerType

# Layers
from .layers import KnowledgeLayer, LayerLoadResult, create_layer

# Services layer
from .services.relevance import RelevanceIndex, RelevanceMatch, SearchOptions
from .services.router import SpecialistRouter, SpecialistSuggestion, DiscoveryContext
from .services.knowledge import KnowledgeService

__all__ = [
    # Core
    'Topic', 'RelevanceSignals', 'Difficulty', 'PatternType', 'TopicParseError',
    'Specialist',
    'CodeCharacteristics', 'extract_code_characteristics',
    'LayerResolver', 'ResolutionResult', 'OverrideStrategy',
    # Config
    'Config', 'ConfigManager', 'ConfigurationError', 'LayerConfig', 'LayerType',
    # Layers
    'KnowledgeLayer', 'LayerLoadResult', 'create_layer',
    # Services
    'RelevanceIndex', 'RelevanceMatch', 'SearchOptions',
    'SpecialistRouter', 'SpecialistSuggestion', 'DiscoveryContext',
    'KnowledgeService',
]
