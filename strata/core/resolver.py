"""
Layer Resolver - Pick the winning layer for each topic ID

Layers are scanned from highest to lowest numeric priority. The first
layer holding a topic ID is its source; every other layer holding the
same ID is recorded as overridden. Priority 0 (bundled knowledge) loses
every conflict; the highest number wins.

Only full replacement is implemented: the winner's topic is returned
as-is. Other strategies are accepted and fall back to replacement.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Iterable, TYPE_CHECKING

from .topic import Topic

if TYPE_CHECKING:
    from .specialist import Specialist
    from ..layers import KnowledgeLayer

logger = logging.getLogger(__name__)


class OverrideStrategy(Enum):
    """How an overriding topic combines with the versions it shadows."""
    REPLACE = "replace"
    MERGE_CONTENT = "merge_content"
    MERGE_FRONTMATTER = "merge_frontmatter"
    APPEND_CONTENT = "append_content"


@dataclass(frozen=True)
class ResolutionResult:
    """Which layer supplies a topic, and which layers it shadows."""
    topic: Topic
    source_layer: str
    overridden_layers: List[str] = field(default_factory=list)

    @property
    def is_override(self) -> bool:
        return bool(self.overridden_layers)

    def to_dict(self) -> dict:
        return {
            "topic_id": self.topic.id,
            "source_layer": self.source_layer,
            "is_override": self.is_override,
            "overridden_layers": list(self.overridden_layers),
        }


def _replace(winner: Topic, shadowed: List[Topic]) -> Topic:
    return winner


_STRATEGIES = {
    OverrideStrategy.REPLACE: _replace,
}


def is_implemented(strategy: OverrideStrategy) -> bool:
    return strategy in _STRATEGIES


def apply_override(strategy: OverrideStrategy, winner: Topic, shadowed: List[Topic]) -> Topic:
    """
    Combine the winning topic with the versions it overrides.

    Unimplemented strategies log a warning and behave like REPLACE.
    """
    handler = _STRATEGIES.get(strategy)
    if handler is None:
        logger.warning("Override strategy %s is not implemented; using replace", strategy.value)
        handler = _replace
    return handler(winner, shadowed)


class LayerResolver:
    """
    Resolves topic IDs across prioritized layers.

    Only layers that are enabled and loaded successfully take part.
    Ties in priority keep configuration order.
    """

    def __init__(
        self,
        layers: Iterable['KnowledgeLayer'] = (),
        strategy: OverrideStrategy = OverrideStrategy.REPLACE
    ):
        if not is_implemented(strategy):
            logger.warning("Override strategy %s is not implemented; using replace", strategy.value)
            strategy = OverrideStrategy.REPLACE
        self.strategy = strategy
        self._layers: List['KnowledgeLayer'] = []
        self.set_layers(layers)

    def set_layers(self, layers: Iterable['KnowledgeLayer']) -> None:
        self._layers = sorted(layers, key=lambda layer: -layer.priority)

    @property
    def layers(self) -> List['KnowledgeLayer']:
        """Active layers, highest priority first."""
        return [layer for layer in self._layers if layer.enabled and layer.is_loaded]

    def get_layer(self, name: str) -> Optional['KnowledgeLayer']:
        for layer in self._layers:
            if layer.name == name:
                return layer
        return None

    def resolve(self, topic_id: str) -> Optional[ResolutionResult]:
        """
        Resolve a topic ID to the winning layer's topic.

        Returns None when no active layer has the topic.
        """
        winner: Optional[Topic] = None
        source_layer: Optional[str] = None
        overridden: List[str] = []
        shadowed: List[Topic] = []

        for layer in self.layers:
            if not layer.has_topic(topic_id):
                continue
            if winner is None:
                topic = layer.get_topic(topic_id)
                if topic is None:
                    # Vanished since the layer was scanned
                    continue
                winner = topic
                source_layer = layer.name
            else:
                overridden.append(layer.name)
                if self.strategy is not OverrideStrategy.REPLACE:
                    shadowed_topic = layer.get_topic(topic_id)
                    if shadowed_topic is not None:
                        shadowed.append(shadowed_topic)

        if winner is None:
            return None

        if overridden:
            logger.debug("Topic %s from %s overrides %s", topic_id, source_layer, ", ".join(overridden))

        return ResolutionResult(
            topic=apply_override(self.strategy, winner, shadowed),
            source_layer=source_layer,
            overridden_layers=overridden,
        )

    def get_all_topic_ids(self) -> List[str]:
        """Union of topic IDs over active layers, sorted."""
        ids = set()
        for layer in self.layers:
            ids.update(layer.get_topic_ids())
        return sorted(ids)

    def get_overridden_topics(self) -> Dict[str, List[str]]:
        """Topic IDs present in more than one active layer -> layer names (winner first)."""
        holders: Dict[str, List[str]] = {}
        for layer in self.layers:
            for topic_id in layer.get_topic_ids():
                holders.setdefault(topic_id, []).append(layer.name)
        return {
            topic_id: names
            for topic_id, names in sorted(holders.items())
            if len(names) > 1
        }

    def get_specialists(self) -> List['Specialist']:
        """Flat union of specialists; the highest-priority definition of an ID wins."""
        specialists: Dict[str, 'Specialist'] = {}
        for layer in self.layers:
            for specialist in layer.get_specialists():
                specialists.setdefault(specialist.specialist_id, specialist)
        return list(specialists.values())
