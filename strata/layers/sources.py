"""
Layer sources - The closed set of content-source variants

Every source answers one question: where is the content directory?
materialize() returns that directory (or None for "nothing there, and
that's fine"), or raises LayerLoadError when the source is unavailable.

    EmbeddedSource    bundled, read-only knowledge shipped with the package
    LocalSource       project directory; always fresh, re-read on change
    GitSource         remote repository cached on disk (see git.py)
    UnsupportedSource http/npm; declared but fails fast
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Optional, Tuple

from ..config import LayerType
from .base import LayerLoadError

logger = logging.getLogger(__name__)


PROJECT_OVERRIDE_TAG = "project-override"


@dataclass
class EmbeddedSource:
    """Knowledge bundled with the package. Missing content is an error."""
    path: Path

    kind: ClassVar[LayerType] = LayerType.EMBEDDED
    live: ClassVar[bool] = False
    lowercase_ids: ClassVar[bool] = False
    extra_tags: ClassVar[Tuple[str, ...]] = ()

    def materialize(self) -> Path:
        if not self.path.is_dir():
            raise LayerLoadError(f"Embedded knowledge not found at {self.path}")
        return self.path

    def dispose(self) -> None:
        pass


@dataclass
class LocalSource:
    """
    A directory of project overrides.

    A missing directory is not an error: the project simply has no
    overrides yet. Topics are tagged 'project-override'.
    """
    path: Path

    kind: ClassVar[LayerType] = LayerType.LOCAL
    live: ClassVar[bool] = True
    lowercase_ids: ClassVar[bool] = False
    extra_tags: ClassVar[Tuple[str, ...]] = (PROJECT_OVERRIDE_TAG,)

    def materialize(self) -> Optional[Path]:
        if not self.path.exists():
            logger.info("Local layer directory %s does not exist; no overrides loaded", self.path)
            return None
        if not self.path.is_dir():
            raise LayerLoadError(f"Local layer path is not a directory: {self.path}")
        return self.path

    def dispose(self) -> None:
        pass


@dataclass
class UnsupportedSource:
    """Source types that are declared but not implemented."""
    kind: LayerType

    live: ClassVar[bool] = False
    lowercase_ids: ClassVar[bool] = False
    extra_tags: ClassVar[Tuple[str, ...]] = ()

    def materialize(self) -> Path:
        raise LayerLoadError(f"{self.kind.value} layer sources are not yet implemented")

    def dispose(self) -> None:
        pass
