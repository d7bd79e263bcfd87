"""
LoaderConfig - Settings for bounded-parallel layer loading

Environment variables:
- STRATA_PARALLEL_LOADING: Load layers in parallel (default: true)
- STRATA_MAX_CONCURRENT_LOADS: Worker threads for layer loading (default: 5)
- STRATA_LOAD_TIMEOUT: Per-layer load timeout in seconds (default: 30)
"""

import os
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import PerformanceConfig


@dataclass
class LoaderConfig:
    """
    Configuration for the layer loader.

    Loaded from environment variables or the performance config section.
    """

    parallel: bool = True
    max_concurrent_loads: int = 5          # ThreadPool size
    load_timeout: float = 30.0             # Seconds per layer, from when it starts

    @classmethod
    def from_env(cls) -> 'LoaderConfig':
        """Load configuration from environment variables."""
        return cls(
            parallel=_get_bool_env("STRATA_PARALLEL_LOADING", True),
            max_concurrent_loads=_get_int_env("STRATA_MAX_CONCURRENT_LOADS", 5),
            load_timeout=_get_float_env("STRATA_LOAD_TIMEOUT", 30.0),
        )

    @classmethod
    def from_performance(cls, performance: Optional['PerformanceConfig']) -> 'LoaderConfig':
        """Sizes from the config file; the parallel toggle stays env-driven."""
        if performance is None:
            return cls.from_env()
        return cls(
            parallel=_get_bool_env("STRATA_PARALLEL_LOADING", True),
            max_concurrent_loads=performance.max_concurrent_loads,
            load_timeout=performance.load_timeout,
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if self.max_concurrent_loads < 1:
            raise ValueError("STRATA_MAX_CONCURRENT_LOADS must be >= 1")
        if self.load_timeout <= 0:
            raise ValueError("STRATA_LOAD_TIMEOUT must be > 0")

    def to_dict(self) -> dict:
        """Serialize for display/logging."""
        return {
            "parallel": self.parallel,
            "max_concurrent_loads": self.max_concurrent_loads,
            "load_timeout": self.load_timeout,
        }


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    value = os.environ.get(key, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(key: str, default: int) -> int:
    """Get integer from environment variable."""
    value = os.environ.get(key, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_float_env(key: str, default: float) -> float:
    """Get float from environment variable."""
    value = os.environ.get(key, "")
    if value:
        try:
            return float(value)
        except ValueError:
            pass
    return default
