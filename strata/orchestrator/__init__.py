"""
Orchestrator - Bounded-parallel layer loading

    pool = LayerLoadPool(LoaderConfig.from_env())
    results = pool.load_all(layers)
"""

from .config import LoaderConfig
from .pools import LayerLoadPool, PoolStats

__all__ = [
    "LoaderConfig",
    "LayerLoadPool",
    "PoolStats",
]
