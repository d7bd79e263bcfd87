"""
Shared pytest fixtures for the Strata test suite.

Provides fixtures built on StrataTestFactory, which writes real topic
and specialist files under tmp_path.

Usage in tests:
    def test_something(strata_factory):
        strata_factory.add_topic("team", "performance/findset")
        layer = strata_factory.local_layer("team", priority=20)

    def test_with_data(sample_layers):
        # three layers (base 10, team 20, project 100), not yet loaded
        for layer in sample_layers:
            layer.initialize()
"""

import logging

import pytest

from tests.factories import StrataTestFactory


STRATA_ENV_VARS = (
    "STRATA_CONFIG_PATH",
    "STRATA_MAX_CONCURRENT_LOADS",
    "STRATA_LOAD_TIMEOUT",
    "STRATA_PARALLEL_LOADING",
    "STRATA_GIT_TTL",
    "STRATA_CACHE_DIR",
    "STRATA_LOG_LEVEL",
    "STRATA_PROJECT_PATH",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's STRATA_* settings out of every test."""
    for name in STRATA_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_strata_log_level():
    """The CLI sets the package logger level; put it back afterwards."""
    logger = logging.getLogger("strata")
    level = logger.level
    yield
    logger.setLevel(level)


@pytest.fixture
def strata_factory(tmp_path):
    """
    Create an empty StrataTestFactory.

    Use this when you need fine-grained control over layer content.
    """
    return StrataTestFactory(tmp_path)


@pytest.fixture
def sample_layers(strata_factory):
    """
    Three uninitialized layers over a small AL knowledge set.

    See StrataTestFactory.create_sample_layers for the content.
    """
    return strata_factory.create_sample_layers()


@pytest.fixture
def sample_service(strata_factory):
    """KnowledgeService over the sample layers, initialized."""
    service = strata_factory.service(*strata_factory.create_sample_layers())
    service.initialize()
    yield service
    service.dispose()
