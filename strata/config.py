"""
Configuration - Layer definitions and engine settings

Config hierarchy (highest to lowest priority):
  1. Environment scalars (STRATA_MAX_CONCURRENT_LOADS, STRATA_LOAD_TIMEOUT,
     STRATA_GIT_TTL, STRATA_CACHE_DIR, STRATA_LOG_LEVEL)
  2. File named by STRATA_CONFIG_PATH
  3. Project config (strata.yaml or .strata/config.yaml)
  4. User config (~/.strata/config.yaml)
  5. Defaults (bundled knowledge at priority 0, ./strata-overrides at 100)

Mappings are deep-merged; lists replace. A `layers:` list in any file
therefore replaces the default layers entirely.

Layers are declared as:

    layers:
      - name: company
        priority: 50
        source:
          type: git
          url: https://github.com/acme/knowledge.git
          branch: main
          subpath: al
        auth:
          type: token
          token_env_var: ACME_TOKEN
        cache_duration: 6h

Credentials are never required in files: token_env_var and
password_env_var name environment variables read at load time.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List

import yaml

from .core.resolver import OverrideStrategy

logger = logging.getLogger(__name__)


BUNDLED_KNOWLEDGE_DIR = Path(__file__).parent / "knowledge"

LAYER_NAME_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9_-]*$')
DURATION_PATTERN = re.compile(r'^(\d+)(s|m|h|d)$')
DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
SCP_URL_PATTERN = re.compile(r'^[\w.-]+@[\w.-]+:\S+$')
GIT_URL_SCHEMES = ("https://", "http://", "ssh://", "git://", "file://")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

MIN_PRIORITY = 0
MAX_PRIORITY = 1000


class LayerType(Enum):
    """Knowledge source variants."""
    EMBEDDED = "embedded"
    LOCAL = "local"
    GIT = "git"
    HTTP = "http"
    NPM = "npm"


class AuthType(Enum):
    TOKEN = "token"
    SSH = "ssh"
    BASIC = "basic"


def parse_duration(value: str) -> float:
    """
    Parse a cache duration into seconds.

    "30s", "15m", "1h", "7d"; "permanent" never expires (inf),
    "immediate" is always expired (0).

    Raises:
        ValueError: Unrecognized format
    """
    text = str(value).strip().lower()
    if text == "permanent":
        return float("inf")
    if text == "immediate":
        return 0.0
    match = DURATION_PATTERN.match(text)
    if not match:
        raise ValueError(f"Invalid duration '{value}'. Use <n>s|m|h|d, 'permanent' or 'immediate'")
    return float(int(match.group(1)) * DURATION_UNITS[match.group(2)])


@dataclass
class ValidationIssue:
    """One configuration problem, addressed by field path."""
    field: str
    message: str
    value: Any = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.field}: {self.message}"
        if self.value is not None:
            text += f" (got {self.value!r})"
        if self.suggestion:
            text += f". {self.suggestion}"
        return text


@dataclass
class ValidationReport:
    """Errors block loading; warnings are logged and kept."""
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, field_path: str, message: str, value: Any = None, suggestion: str = None):
        self.errors.append(ValidationIssue(field_path, message, value, suggestion))

    def warn(self, field_path: str, message: str, value: Any = None, suggestion: str = None):
        self.warnings.append(ValidationIssue(field_path, message, value, suggestion))


class ConfigurationError(Exception):
    """Structurally invalid configuration. Carries the full report."""

    def __init__(self, report: ValidationReport):
        self.report = report
        lines = [str(issue) for issue in report.errors]
        super().__init__("Invalid configuration:\n  " + "\n  ".join(lines))

    @classmethod
    def single(cls, field_path: str, message: str, value: Any = None) -> 'ConfigurationError':
        report = ValidationReport()
        report.error(field_path, message, value)
        return cls(report)


@dataclass
class AuthConfig:
    """Credentials for a remote layer."""
    type: AuthType = AuthType.TOKEN
    token: Optional[str] = None
    token_env_var: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    password_env_var: Optional[str] = None
    key_path: Optional[str] = None

    def resolve_token(self) -> Optional[str]:
        if self.token:
            return self.token
        if self.token_env_var:
            return os.environ.get(self.token_env_var)
        return None

    def resolve_password(self) -> Optional[str]:
        if self.password:
            return self.password
        if self.password_env_var:
            return os.environ.get(self.password_env_var)
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], field_path: str = "auth") -> 'AuthConfig':
        raw_type = str(data.get("type", "token")).lower()
        try:
            auth_type = AuthType(raw_type)
        except ValueError:
            raise ConfigurationError.single(
                f"{field_path}.type",
                f"Unknown auth type. Valid: {', '.join(t.value for t in AuthType)}",
                raw_type,
            )
        return cls(
            type=auth_type,
            token=data.get("token"),
            token_env_var=data.get("token_env_var"),
            username=data.get("username"),
            password=data.get("password"),
            password_env_var=data.get("password_env_var"),
            key_path=data.get("key_path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type.value}
        for key in ("token_env_var", "username", "password_env_var", "key_path"):
            if getattr(self, key):
                data[key] = getattr(self, key)
        return data


@dataclass
class LayerConfig:
    """One knowledge layer."""
    name: str
    priority: int
    type: LayerType
    enabled: bool = True
    path: Optional[str] = None
    url: Optional[str] = None
    branch: Optional[str] = None
    subpath: Optional[str] = None
    package: Optional[str] = None
    cache_duration: Optional[str] = None
    auth: Optional[AuthConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> 'LayerConfig':
        """
        Build from a mapping with a nested `source:` block.

        Source keys may also be given at the top level.
        """
        prefix = f"layers[{index}]"
        source = dict(data)
        if isinstance(data.get("source"), dict):
            source.update(data["source"])

        raw_type = source.get("type")
        try:
            layer_type = LayerType(str(raw_type).lower())
        except ValueError:
            raise ConfigurationError.single(
                f"{prefix}.source.type",
                f"Unsupported layer source type. Valid: {', '.join(t.value for t in LayerType)}",
                raw_type,
            )

        priority = data.get("priority", 0)
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ConfigurationError.single(f"{prefix}.priority", "Layer priority must be an integer", priority)

        auth_data = data.get("auth")
        return cls(
            name=str(data.get("name", "")),
            priority=priority,
            type=layer_type,
            enabled=bool(data.get("enabled", True)),
            path=source.get("path"),
            url=source.get("url"),
            branch=source.get("branch"),
            subpath=source.get("subpath"),
            package=source.get("package"),
            cache_duration=data.get("cache_duration"),
            auth=AuthConfig.from_dict(auth_data, f"{prefix}.auth") if isinstance(auth_data, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        source: Dict[str, Any] = {"type": self.type.value}
        for key in ("path", "url", "branch", "subpath", "package"):
            if getattr(self, key):
                source[key] = getattr(self, key)
        data: Dict[str, Any] = {
            "name": self.name,
            "priority": self.priority,
            "enabled": self.enabled,
            "source": source,
        }
        if self.cache_duration:
            data["cache_duration"] = self.cache_duration
        if self.auth:
            data["auth"] = self.auth.to_dict()
        return data


def default_layers() -> List[LayerConfig]:
    """Bundled knowledge as the base, project overrides on top."""
    return [
        LayerConfig(name="embedded", priority=0, type=LayerType.EMBEDDED,
                    path=str(BUNDLED_KNOWLEDGE_DIR)),
        LayerConfig(name="project", priority=100, type=LayerType.LOCAL,
                    path="strata-overrides"),
    ]


@dataclass
class CacheConfig:
    """Remote checkout caching."""
    git_ttl: str = "1h"
    cache_dir: str = ".strata-cache"

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        try:
            parse_duration(self.git_ttl)
        except ValueError as e:
            return str(e)
        return None


@dataclass
class PerformanceConfig:
    """Layer loading limits."""
    max_concurrent_loads: int = 5
    load_timeout: float = 30.0  # seconds, per layer

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if self.max_concurrent_loads < 1:
            return "max_concurrent_loads must be >= 1"
        if self.load_timeout <= 0:
            return "load_timeout must be > 0"
        return None


@dataclass
class SearchConfig:
    """Relevance search defaults."""
    min_score: float = 0.3
    default_limit: int = 10
    content_excerpt: int = 500
    # Extra construct detectors: name -> regex
    extra_constructs: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if not 0.0 <= self.min_score <= 1.0:
            return f"min_score must be within 0..1, got {self.min_score}"
        if self.default_limit < 1:
            return "default_limit must be >= 1"
        if self.content_excerpt < 1:
            return "content_excerpt must be >= 1"
        return None


@dataclass
class ResolutionConfig:
    """How a winning topic combines with the versions it overrides."""
    override_strategy: str = OverrideStrategy.REPLACE.value

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        valid = [s.value for s in OverrideStrategy]
        if self.override_strategy not in valid:
            return f"Unknown override_strategy '{self.override_strategy}'. Valid: {', '.join(valid)}"
        return None

    @property
    def strategy(self) -> OverrideStrategy:
        return OverrideStrategy(self.override_strategy)


@dataclass
class Config:
    """Application configuration."""
    layers: List[LayerConfig] = field(default_factory=default_layers)
    cache: CacheConfig = field(default_factory=CacheConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    log_level: str = "WARNING"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "layers": [layer.to_dict() for layer in self.layers],
            "cache": {
                "git_ttl": self.cache.git_ttl,
                "cache_dir": self.cache.cache_dir,
            },
            "performance": {
                "max_concurrent_loads": self.performance.max_concurrent_loads,
                "load_timeout": self.performance.load_timeout,
            },
            "search": {
                "min_score": self.search.min_score,
                "default_limit": self.search.default_limit,
                "content_excerpt": self.search.content_excerpt,
                "extra_constructs": dict(self.search.extra_constructs),
            },
            "resolution": {
                "override_strategy": self.resolution.override_strategy,
            },
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create from dictionary."""
        cache_data = data.get("cache") or {}
        performance_data = data.get("performance") or {}
        search_data = data.get("search") or {}
        resolution_data = data.get("resolution") or {}

        if "layers" in data:
            raw_layers = data.get("layers") or []
            if not isinstance(raw_layers, list):
                raise ConfigurationError.single("layers", "layers must be a list", type(raw_layers).__name__)
            layers = [LayerConfig.from_dict(item or {}, index) for index, item in enumerate(raw_layers)]
        else:
            layers = default_layers()

        try:
            return cls(
                layers=layers,
                cache=CacheConfig(
                    git_ttl=str(cache_data.get("git_ttl", "1h")),
                    cache_dir=str(cache_data.get("cache_dir", ".strata-cache")),
                ),
                performance=PerformanceConfig(
                    max_concurrent_loads=int(performance_data.get("max_concurrent_loads", 5)),
                    load_timeout=float(performance_data.get("load_timeout", 30.0)),
                ),
                search=SearchConfig(
                    min_score=float(search_data.get("min_score", 0.3)),
                    default_limit=int(search_data.get("default_limit", 10)),
                    content_excerpt=int(search_data.get("content_excerpt", 500)),
                    extra_constructs=dict(search_data.get("extra_constructs") or {}),
                ),
                resolution=ResolutionConfig(
                    override_strategy=str(resolution_data.get("override_strategy", "replace")).lower(),
                ),
                log_level=str(data.get("log_level", "WARNING")).upper(),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError.single("config", f"Invalid value: {e}")


def _validate_git_url(url: str, prefix: str, report: ValidationReport) -> None:
    if SCP_URL_PATTERN.match(url):
        return
    if not url.startswith(GIT_URL_SCHEMES):
        report.error(f"{prefix}.url", "Invalid git URL format", url,
                     "Use https://, ssh://, git://, file:// or user@host:path")
        return
    if url.startswith("http://"):
        report.warn(f"{prefix}.url", "Git URL uses HTTP instead of HTTPS", url, "Use HTTPS for better security")


def _validate_layer(layer: LayerConfig, index: int, report: ValidationReport) -> None:
    prefix = f"layers[{index}]"
    source = f"{prefix}.source"

    if not LAYER_NAME_PATTERN.match(layer.name or ""):
        report.error(f"{prefix}.name",
                     "Layer name must start with a letter and contain only letters, numbers, underscores and hyphens",
                     layer.name)

    if not MIN_PRIORITY <= layer.priority <= MAX_PRIORITY:
        report.error(f"{prefix}.priority", f"Layer priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}",
                     layer.priority)

    if layer.type == LayerType.GIT:
        if not layer.url:
            report.error(f"{source}.url", "Git source requires URL")
        else:
            _validate_git_url(layer.url, source, report)
        if layer.subpath and (layer.subpath.startswith('/') or '..' in layer.subpath):
            report.warn(f"{source}.subpath", "Potentially unsafe subpath", layer.subpath,
                        "Use relative paths without .. navigation")
    elif layer.type == LayerType.LOCAL:
        if not layer.path:
            report.error(f"{source}.path", "Local source requires path")
    elif layer.type == LayerType.HTTP:
        if not layer.url:
            report.error(f"{source}.url", "HTTP source requires URL")
        report.warn(f"{source}.type", "HTTP sources are not yet implemented", layer.type.value)
    elif layer.type == LayerType.NPM:
        if not layer.package:
            report.error(f"{source}.package", "NPM source requires package name")
        report.warn(f"{source}.type", "NPM sources are not yet implemented", layer.type.value)

    if layer.auth:
        _validate_auth(layer.auth, f"{prefix}.auth", report)

    if layer.cache_duration:
        try:
            parse_duration(layer.cache_duration)
        except ValueError:
            report.error(f"{prefix}.cache_duration", "Invalid cache duration format", layer.cache_duration,
                         "Use formats like '1h', '30m', '7d', 'permanent' or 'immediate'")


def _validate_auth(auth: AuthConfig, prefix: str, report: ValidationReport) -> None:
    if auth.type == AuthType.TOKEN:
        if not auth.token and not auth.token_env_var:
            report.error(f"{prefix}.token", "Token authentication requires token or token_env_var")
        if auth.token:
            report.warn(f"{prefix}.token", "Token is hardcoded in configuration",
                        suggestion="Use token_env_var instead")
    elif auth.type == AuthType.BASIC:
        if not auth.username:
            report.error(f"{prefix}.username", "Basic authentication requires username")
        if auth.password:
            report.warn(f"{prefix}.password", "Password is hardcoded in configuration",
                        suggestion="Use password_env_var instead")
    elif auth.type == AuthType.SSH:
        if not auth.key_path:
            report.warn(f"{prefix}.key_path", "No key_path given; the default SSH identity will be used")


def validate_config(config: Config) -> ValidationReport:
    """Check a configuration, collecting every problem with its field path."""
    report = ValidationReport()

    if not config.layers:
        report.error("layers", "At least one layer must be configured",
                     suggestion="Add an embedded layer as the base knowledge source")

    seen_names = set()
    seen_priorities = set()
    for index, layer in enumerate(config.layers):
        if layer.name in seen_names:
            report.error(f"layers[{index}].name", f"Duplicate layer name: {layer.name}", layer.name)
        seen_names.add(layer.name)

        if layer.priority in seen_priorities:
            report.warn(f"layers[{index}].priority", f"Multiple layers have priority {layer.priority}",
                        layer.priority, "Use unique priorities to ensure predictable layer ordering")
        seen_priorities.add(layer.priority)

        _validate_layer(layer, index, report)

    for section_name, section in (
        ("cache", config.cache),
        ("performance", config.performance),
        ("search", config.search),
        ("resolution", config.resolution),
    ):
        error = section.validate()
        if error:
            report.error(section_name, error)

    if config.log_level not in LOG_LEVELS:
        report.error("log_level", f"Unknown log level. Valid: {', '.join(LOG_LEVELS)}", config.log_level)

    return report


class ConfigManager:
    """
    Manages configuration loading.

    Hierarchy:
      1. Environment overrides
      2. STRATA_CONFIG_PATH file
      3. Project config (strata.yaml, .strata/config.yaml)
      4. User config (~/.strata/config.yaml)
      5. Defaults
    """

    PROJECT_CONFIG_FILES = ("strata.yaml", ".strata/config.yaml")
    USER_CONFIG_FILE = "config.yaml"

    def __init__(self, project_dir: Optional[Path] = None, user_dir: Optional[Path] = None):
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.user_dir = Path(user_dir) if user_dir else Path.home() / ".strata"
        self._config: Optional[Config] = None
        self.report: Optional[ValidationReport] = None

    @property
    def user_config_path(self) -> Path:
        return self.user_dir / self.USER_CONFIG_FILE

    @property
    def project_config_path(self) -> Optional[Path]:
        """First existing project config file, if any."""
        for name in self.PROJECT_CONFIG_FILES:
            candidate = self.project_dir / name
            if candidate.exists():
                return candidate
        return None

    def load(self, validate: bool = True) -> Config:
        """
        Load configuration from all sources.

        Raises:
            ConfigurationError: Malformed YAML, bad env values, or (when
                validate is True) any validation error
        """
        if self._config is not None:
            return self._config

        config_data: Dict[str, Any] = {}

        for path in (self.user_config_path, self.project_config_path, self._env_config_path()):
            if path is not None and path.exists():
                config_data = self._merge(config_data, self._read_yaml(path))

        config_data = self._apply_env(config_data)
        config = Config.from_dict(config_data)
        self._resolve_paths(config)

        self.report = validate_config(config)
        for warning in self.report.warnings:
            logger.warning("Config warning: %s", warning)
        if validate and not self.report.is_valid:
            raise ConfigurationError(self.report)

        self._config = config
        return config

    def _env_config_path(self) -> Optional[Path]:
        value = os.environ.get("STRATA_CONFIG_PATH")
        if not value:
            return None
        path = Path(value)
        if not path.exists():
            raise ConfigurationError.single("STRATA_CONFIG_PATH", "Config file does not exist", value)
        return path

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError.single(str(path), f"Malformed YAML: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError.single(str(path), "Config file must contain a mapping")
        logger.debug("Loaded config file %s", path)
        return data

    def _apply_env(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        env = os.environ
        if env.get("STRATA_MAX_CONCURRENT_LOADS"):
            config_data.setdefault("performance", {})["max_concurrent_loads"] = self._env_number(
                "STRATA_MAX_CONCURRENT_LOADS", int)
        if env.get("STRATA_LOAD_TIMEOUT"):
            config_data.setdefault("performance", {})["load_timeout"] = self._env_number(
                "STRATA_LOAD_TIMEOUT", float)
        if env.get("STRATA_GIT_TTL"):
            config_data.setdefault("cache", {})["git_ttl"] = env["STRATA_GIT_TTL"]
        if env.get("STRATA_CACHE_DIR"):
            config_data.setdefault("cache", {})["cache_dir"] = env["STRATA_CACHE_DIR"]
        if env.get("STRATA_LOG_LEVEL"):
            config_data["log_level"] = env["STRATA_LOG_LEVEL"]
        return config_data

    @staticmethod
    def _env_number(name: str, kind):
        value = os.environ[name]
        try:
            return kind(value)
        except ValueError:
            raise ConfigurationError.single(name, f"Expected {kind.__name__}", value)

    def _resolve_paths(self, config: Config) -> None:
        """Anchor relative local paths and the cache dir at the project dir."""
        for layer in config.layers:
            if layer.path and layer.type in (LayerType.LOCAL, LayerType.EMBEDDED):
                path = Path(layer.path).expanduser()
                if not path.is_absolute():
                    layer.path = str(self.project_dir / path)
        cache_dir = Path(config.cache.cache_dir).expanduser()
        if not cache_dir.is_absolute():
            config.cache.cache_dir = str(self.project_dir / cache_dir)

    def _merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts, override wins."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge(result[key], value)
            else:
                result[key] = value
        return result
