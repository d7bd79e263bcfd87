"""
Tests for Config - Layer definitions and engine settings

These tests validate:
- Config hierarchy (env > STRATA_CONFIG_PATH > project > user > defaults)
- Layer parsing with nested source blocks
- Validation issues addressed by field path
- Path anchoring at the project directory
"""

from pathlib import Path

import pytest

from strata.config import (
    AuthConfig, AuthType, BUNDLED_KNOWLEDGE_DIR, Config, ConfigManager, ConfigurationError, LayerConfig,
    LayerType, parse_duration, validate_config,
)
from strata.core.resolver import OverrideStrategy


def write_yaml(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    """Configuration with no files at all."""

    def test_default_layers(self, strata_factory):
        """Bundled knowledge at 0, project overrides at 100."""
        config = ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()

        assert [(l.name, l.priority, l.type) for l in config.layers] == [
            ("embedded", 0, LayerType.EMBEDDED),
            ("project", 100, LayerType.LOCAL),
        ]
        assert config.layers[0].path == str(BUNDLED_KNOWLEDGE_DIR)

    def test_default_sections(self):
        config = Config()
        assert config.performance.max_concurrent_loads == 5
        assert config.performance.load_timeout == 30.0
        assert config.search.min_score == 0.3
        assert config.resolution.strategy == OverrideStrategy.REPLACE
        assert config.log_level == "WARNING"

    def test_relative_paths_anchor_at_project(self, strata_factory):
        config = ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()
        assert config.layers[1].path == str(strata_factory.project_dir / "strata-overrides")
        assert config.cache.cache_dir == str(strata_factory.project_dir / ".strata-cache")

    def test_load_is_cached(self, strata_factory):
        manager = ConfigManager(strata_factory.project_dir, strata_factory.user_dir)
        assert manager.load() is manager.load()


class TestHierarchy:
    """Which source wins."""

    def test_project_overrides_user(self, strata_factory):
        write_yaml(strata_factory.user_dir / "config.yaml",
                   "search:\n  min_score: 0.5\n  default_limit: 4\n")
        strata_factory.write_config({"search": {"min_score": 0.2}})

        config = ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()

        assert config.search.min_score == 0.2
        # Deep merge keeps the user's sibling key
        assert config.search.default_limit == 4

    def test_hidden_project_config(self, strata_factory):
        strata_factory.write_config({"log_level": "debug"}, filename=".strata/config.yaml")
        config = ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()
        assert config.log_level == "DEBUG"

    def test_config_path_env_overrides_project(self, strata_factory, tmp_path, monkeypatch):
        strata_factory.write_config({"search": {"default_limit": 3}})
        extra = write_yaml(tmp_path / "elsewhere.yaml", "search:\n  default_limit: 7\n")
        monkeypatch.setenv("STRATA_CONFIG_PATH", str(extra))

        config = ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()
        assert config.search.default_limit == 7

    def test_missing_config_path_raises(self, strata_factory, tmp_path, monkeypatch):
        monkeypatch.setenv("STRATA_CONFIG_PATH", str(tmp_path / "nope.yaml"))
        with pytest.raises(ConfigurationError) as excinfo:
            ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()
        assert excinfo.value.report.errors[0].field == "STRATA_CONFIG_PATH"

    def test_environment_overrides_files(self, strata_factory, monkeypatch):
        strata_factory.write_config({"performance": {"max_concurrent_loads": 2, "load_timeout": 5}})
        monkeypatch.setenv("STRATA_MAX_CONCURRENT_LOADS", "8")
        monkeypatch.setenv("STRATA_LOAD_TIMEOUT", "2.5")
        monkeypatch.setenv("STRATA_GIT_TTL", "15m")
        monkeypatch.setenv("STRATA_LOG_LEVEL", "info")

        config = ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()

        assert config.performance.max_concurrent_loads == 8
        assert config.performance.load_timeout == 2.5
        assert config.cache.git_ttl == "15m"
        assert config.log_level == "INFO"

    def test_bad_env_number(self, strata_factory, monkeypatch):
        monkeypatch.setenv("STRATA_MAX_CONCURRENT_LOADS", "many")
        with pytest.raises(ConfigurationError) as excinfo:
            ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()
        assert excinfo.value.report.errors[0].field == "STRATA_MAX_CONCURRENT_LOADS"

    def test_layers_list_replaces_defaults(self, strata_factory):
        strata_factory.write_config({"layers": [
            {"name": "team", "priority": 20, "source": {"type": "local", "path": "team-knowledge"}},
        ]})
        config = ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()

        assert [layer.name for layer in config.layers] == ["team"]
        assert config.layers[0].path == str(strata_factory.project_dir / "team-knowledge")


class TestMalformed:
    """Files that cannot be used."""

    def test_malformed_yaml(self, strata_factory):
        write_yaml(strata_factory.project_dir / "strata.yaml", "layers: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Malformed YAML"):
            ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()

    def test_non_mapping(self, strata_factory):
        write_yaml(strata_factory.project_dir / "strata.yaml", "- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            ConfigManager(strata_factory.project_dir, strata_factory.user_dir).load()

    def test_bad_scalar(self):
        with pytest.raises(ConfigurationError):
            Config.from_dict({"search": {"default_limit": "lots"}})

    def test_layers_not_a_list(self):
        with pytest.raises(ConfigurationError) as excinfo:
            Config.from_dict({"layers": {"name": "team"}})
        assert excinfo.value.report.errors[0].field == "layers"


class TestLayerConfig:
    """Layer parsing."""

    def test_nested_source(self):
        layer = LayerConfig.from_dict({
            "name": "company",
            "priority": 50,
            "source": {"type": "git", "url": "https://github.com/acme/k.git", "branch": "main", "subpath": "al"},
            "auth": {"type": "token", "token_env_var": "ACME_TOKEN"},
            "cache_duration": "6h",
        })
        assert layer.type == LayerType.GIT
        assert layer.branch == "main"
        assert layer.subpath == "al"
        assert layer.auth.type == AuthType.TOKEN
        assert layer.cache_duration == "6h"

    def test_flat_source_keys(self):
        layer = LayerConfig.from_dict({"name": "team", "priority": 20, "type": "LOCAL", "path": "k"})
        assert layer.type == LayerType.LOCAL
        assert layer.path == "k"

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError) as excinfo:
            LayerConfig.from_dict({"name": "x", "priority": 1, "source": {"type": "ftp"}}, index=3)
        assert excinfo.value.report.errors[0].field == "layers[3].source.type"

    def test_priority_must_be_integer(self):
        with pytest.raises(ConfigurationError) as excinfo:
            LayerConfig.from_dict({"name": "x", "priority": "high", "source": {"type": "local", "path": "k"}})
        assert excinfo.value.report.errors[0].field == "layers[0].priority"

    def test_unknown_auth_type(self):
        with pytest.raises(ConfigurationError, match="Unknown auth type"):
            LayerConfig.from_dict({"name": "x", "priority": 1, "source": {"type": "git", "url": "https://h/r.git"},
                                   "auth": {"type": "oauth"}})

    def test_to_dict_round_trip_keeps_source(self):
        data = {"name": "team", "priority": 20, "enabled": False, "source": {"type": "local", "path": "k"}}
        assert LayerConfig.from_dict(data).to_dict() == data

    def test_token_from_env_var(self, monkeypatch):
        monkeypatch.setenv("ACME_TOKEN", "secret")
        layer = LayerConfig.from_dict({"name": "x", "priority": 1, "source": {"type": "git", "url": "https://h/r.git"},
                                       "auth": {"token_env_var": "ACME_TOKEN"}})
        assert layer.auth.resolve_token() == "secret"


def layer(**fields):
    data = {"name": "team", "priority": 20, "type": LayerType.LOCAL, "path": "k"}
    data.update(fields)
    return LayerConfig(**data)


def fields(issues):
    return [issue.field for issue in issues]


class TestValidation:
    """Problems collected with their field paths."""

    def test_valid_defaults(self):
        report = validate_config(Config())
        assert report.is_valid
        assert report.warnings == []

    def test_no_layers(self):
        assert fields(validate_config(Config(layers=[])).errors) == ["layers"]

    def test_bad_name(self):
        report = validate_config(Config(layers=[layer(name="9lives")]))
        assert fields(report.errors) == ["layers[0].name"]

    def test_priority_range(self):
        report = validate_config(Config(layers=[layer(priority=1001)]))
        assert fields(report.errors) == ["layers[0].priority"]

    def test_duplicate_name_is_error(self):
        report = validate_config(Config(layers=[layer(), layer(priority=30)]))
        assert fields(report.errors) == ["layers[1].name"]

    def test_duplicate_priority_is_warning(self):
        report = validate_config(Config(layers=[layer(), layer(name="other")]))
        assert report.is_valid
        assert fields(report.warnings) == ["layers[1].priority"]

    def test_git_requires_url(self):
        report = validate_config(Config(layers=[layer(type=LayerType.GIT, path=None)]))
        assert fields(report.errors) == ["layers[0].source.url"]

    def test_git_url_formats(self):
        good = ["https://h/r.git", "ssh://git@h/r.git", "git@github.com:acme/r.git", "file:///srv/r.git"]
        for url in good:
            assert validate_config(Config(layers=[layer(type=LayerType.GIT, url=url)])).is_valid, url

        report = validate_config(Config(layers=[layer(type=LayerType.GIT, url="ftp://h/r")]))
        assert fields(report.errors) == ["layers[0].source.url"]

    def test_http_git_url_warns(self):
        report = validate_config(Config(layers=[layer(type=LayerType.GIT, url="http://h/r.git")]))
        assert report.is_valid
        assert fields(report.warnings) == ["layers[0].source.url"]

    def test_unsafe_subpath_warns(self):
        report = validate_config(Config(layers=[layer(type=LayerType.GIT, url="https://h/r.git", subpath="../x")]))
        assert fields(report.warnings) == ["layers[0].source.subpath"]

    def test_local_requires_path(self):
        report = validate_config(Config(layers=[layer(path=None)]))
        assert fields(report.errors) == ["layers[0].source.path"]

    def test_unimplemented_types_warn(self):
        report = validate_config(Config(layers=[
            layer(type=LayerType.HTTP, url="https://h/k"),
            layer(name="npm", priority=30, type=LayerType.NPM, package="@acme/k"),
        ]))
        assert report.is_valid
        assert fields(report.warnings) == ["layers[0].source.type", "layers[1].source.type"]

    def test_hardcoded_token_warns(self):
        report = validate_config(Config(layers=[
            layer(type=LayerType.GIT, url="https://h/r.git", auth=AuthConfig(token="abc")),
        ]))
        assert report.is_valid
        assert fields(report.warnings) == ["layers[0].auth.token"]

    def test_token_auth_needs_a_token(self):
        report = validate_config(Config(layers=[
            layer(type=LayerType.GIT, url="https://h/r.git", auth=AuthConfig()),
        ]))
        assert fields(report.errors) == ["layers[0].auth.token"]

    def test_bad_cache_duration(self):
        report = validate_config(Config(layers=[layer(cache_duration="soon")]))
        assert fields(report.errors) == ["layers[0].cache_duration"]

    def test_section_errors(self):
        config = Config()
        config.search.min_score = 1.5
        config.performance.load_timeout = 0
        config.resolution.override_strategy = "shuffle"
        config.log_level = "LOUD"
        assert fields(validate_config(config).errors) == ["performance", "search", "resolution", "log_level"]

    def test_issue_rendering(self):
        report = validate_config(Config(layers=[layer(priority=-1)]))
        text = str(report.errors[0])
        assert text.startswith("layers[0].priority: Layer priority must be between 0 and 1000")
        assert "(got -1)" in text

    def test_manager_raises_with_report(self, strata_factory):
        strata_factory.write_config({"layers": [{"name": "x", "priority": 5000,
                                                 "source": {"type": "local", "path": "k"}}]})
        manager = ConfigManager(strata_factory.project_dir, strata_factory.user_dir)
        with pytest.raises(ConfigurationError) as excinfo:
            manager.load()
        assert fields(excinfo.value.report.errors) == ["layers[0].priority"]

    def test_manager_without_validation(self, strata_factory):
        strata_factory.write_config({"layers": [{"name": "x", "priority": 5000,
                                                 "source": {"type": "local", "path": "k"}}]})
        manager = ConfigManager(strata_factory.project_dir, strata_factory.user_dir)
        config = manager.load(validate=False)
        assert config.layers[0].priority == 5000
        assert not manager.report.is_valid


class TestDurations:
    """Cache duration strings."""

    def test_units(self):
        assert parse_duration("30s") == 30
        assert parse_duration("15m") == 900
        assert parse_duration("1h") == 3600
        assert parse_duration("7d") == 7 * 86400

    def test_keywords(self):
        assert parse_duration("permanent") == float("inf")
        assert parse_duration("immediate") == 0

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_duration("1w")
