"""
Knowledge layers - Prioritized sources of topics and specialists

    layer = create_layer(LayerConfig(name="project", priority=100,
                                     type=LayerType.LOCAL, path="overrides"))
    result = layer.initialize()
    layer.get_topic("performance/findset-vs-findfirst")
"""

from pathlib import Path
from typing import Optional

from ..config import LayerConfig, LayerType, BUNDLED_KNOWLEDGE_DIR, parse_duration
from .base import (
    KnowledgeLayer,
    LayerLoadError,
    LayerLoadResult,
    LayerStatistics,
    TOPICS_DIR,
    SPECIALISTS_DIR,
)
from .sources import EmbeddedSource, LocalSource, UnsupportedSource, PROJECT_OVERRIDE_TAG
from .git import GIT_TIMEOUT, GitSource, cache_key, inject_credentials


DEFAULT_CACHE_DIR = ".strata-cache"
DEFAULT_GIT_TTL = "1h"


def create_source(
    config: LayerConfig,
    cache_dir: Optional[Path] = None,
    default_ttl: str = DEFAULT_GIT_TTL,
    git_timeout: Optional[float] = None
):
    """
    Pick the source variant for a layer configuration.

    git_timeout bounds each git command; the layer load timeout is a
    good value, since a timed-out load is discarded anyway.
    """
    if config.type == LayerType.EMBEDDED:
        return EmbeddedSource(Path(config.path) if config.path else BUNDLED_KNOWLEDGE_DIR)
    if config.type == LayerType.LOCAL:
        return LocalSource(Path(config.path or "."))
    if config.type == LayerType.GIT:
        return GitSource(
            url=config.url or "",
            cache_dir=Path(cache_dir or DEFAULT_CACHE_DIR),
            ttl=parse_duration(config.cache_duration or default_ttl),
            branch=config.branch,
            subpath=config.subpath,
            auth=config.auth,
            timeout=git_timeout or GIT_TIMEOUT,
        )
    return UnsupportedSource(config.type)


def create_layer(
    config: LayerConfig,
    cache_dir: Optional[Path] = None,
    default_ttl: str = DEFAULT_GIT_TTL,
    git_timeout: Optional[float] = None
) -> KnowledgeLayer:
    """Build an uninitialized layer for a configuration."""
    return KnowledgeLayer(config, create_source(config, cache_dir, default_ttl, git_timeout))


__all__ = [
    "KnowledgeLayer",
    "LayerLoadError",
    "LayerLoadResult",
    "LayerStatistics",
    "EmbeddedSource",
    "LocalSource",
    "GitSource",
    "UnsupportedSource",
    "PROJECT_OVERRIDE_TAG",
    "TOPICS_DIR",
    "SPECIALISTS_DIR",
    "cache_key",
    "inject_credentials",
    "create_source",
    "create_layer",
]
