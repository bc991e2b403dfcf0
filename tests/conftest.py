"""Shared test configuration."""

from __future__ import annotations

import pytest

from tests.fakes import FakeConnector, FakeMockLauncher

pytest_plugins = ["pytester"]

TESTBED_ENV_VARS = [
    "TESTBED_SERVER",
    "TESTBED_USER",
    "TESTBED_PASS",
    "TESTBED_BUCKET",
    "TESTBED_VER",
    "TESTBED_COLL",
    "TESTBED_SCOP",
    "TESTBED_FEAT",
    "TESTBED_NOLOG",
    "TESTBED_OFFLINE",
    "TESTBED_CONNECTOR",
    "TESTBED_MOCK_PATH",
]


@pytest.fixture(autouse=True)
def clean_testbed_env(monkeypatch: pytest.MonkeyPatch):
    """Keep the developer's TESTBED_* variables out of the tests."""
    for name in TESTBED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def mock_launcher() -> FakeMockLauncher:
    return FakeMockLauncher()
