"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest

from src.config import Settings, get_settings


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit the real thread API (requires .env with a valid token)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so a developer's real token never leaks into tests.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    Tests that use mock_settings bypass Settings() entirely, so this is transparent.
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "threads_api_base_url": "http://threads.test/api",
            "threads_api_token": "test-token",
            "environment": "test",
            "request_timeout_seconds": 5.0,
            "fetch_limit": 10000,
            "inter_chunk_delay_seconds": 0.0,
            "fetch_max_attempts": 1,
            "fetch_backoff_seconds": "",
            "chunk_boundary_hours": "0,12,17,19,21",
            "cache_db_path": "",
            "cache_ttl_minutes": 30,
            "cache_max_entries": 10,
            "max_latency_seconds": 300.0,
        },
    )()
    with (
        patch("src.config.get_settings", return_value=fake_settings),
        patch("src.ingest.cache.get_settings", return_value=fake_settings),
        patch("src.ingest.orchestrator.get_settings", return_value=fake_settings),
        patch("src.report.generator.get_settings", return_value=fake_settings),
        patch("src.api.main.get_settings", return_value=fake_settings),
        patch("src.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings

