"""Run driver - sequences one test run.

    parse feature directives
    -> offline check (skip resolution entirely in offline mode)
    -> record baseline task count
    -> resolve environment
    -> run the suite
    -> close cluster, then mock
    -> leak check
    -> exit code

Stages raise ConfigurationError / EnvironmentSetupError; the caller (pytest
plugin or CLI) owns the abort. A leak turns any suite exit code into 1.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import TextIO

import structlog

from cluster_testbed.config import ENVIRONMENT_OPTIONS, HarnessSettings, RunConfig
from cluster_testbed.errors import ConfigurationError
from cluster_testbed.interfaces import Connector
from cluster_testbed.mock.couchbase_mock import CouchbaseMockLauncher
from cluster_testbed.resolver import EnvironmentResolver, Fixture, MockHandle
from cluster_testbed.sentinel import (
    LeakReport,
    LeakSample,
    TaskCounter,
    count_live_tasks,
    detect_leak,
    take_sample,
)

logger = structlog.get_logger()

LEAK_EXIT_CODE = 1


def load_connector(path: str) -> Connector:
    """Import a ``module:callable`` connect function.

    Raises:
        ConfigurationError: If the path is empty, malformed or not importable.
    """
    if not path:
        raise ConfigurationError(
            "a connector is required to resolve an environment "
            "(--connector or TESTBED_CONNECTOR, as module:callable)"
        )
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            "connector must be given as module:callable", details={"connector": path}
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            "connector module could not be imported",
            details={"connector": path, "error": str(e)},
        ) from e

    connector = getattr(module, attr, None)
    if not callable(connector):
        raise ConfigurationError(
            "connector is not callable", details={"connector": path}
        )
    return connector


class RunDriver:
    """Owns the fixture and backend handles for one run.

    Usage:
        driver = RunDriver(settings, explicit_options)
        fixture = driver.prepare()
        ...  # run the suite
        exit_code = driver.finish(suite_exit_code)
    """

    def __init__(
        self,
        settings: HarnessSettings,
        explicit_options: frozenset[str] = frozenset(),
        *,
        resolver: EnvironmentResolver | None = None,
        counter: TaskCounter = count_live_tasks,
        leak_check: Callable[..., LeakReport] = detect_leak,
        leak_stream: TextIO | None = None,
    ) -> None:
        self._settings = settings
        self._explicit = explicit_options
        self._resolver = resolver
        self._counter = counter
        self._leak_check = leak_check
        self.leak_stream = leak_stream
        self._log = logger.bind(component="run_driver")

        self.run_config: RunConfig | None = None
        self.fixture: Fixture | None = None
        self.baseline: LeakSample | None = None
        self.leak_report: LeakReport | None = None
        self._mock: MockHandle | None = None
        self._closed = False

    @property
    def offline(self) -> bool:
        return self._settings.offline

    def prepare(self) -> Fixture | None:
        """Parse inputs and resolve the environment.

        Returns None in offline mode.

        Raises:
            ConfigurationError: Malformed directives or options invalid offline.
            EnvironmentSetupError: The backend could not be prepared.
        """
        self.run_config = self._settings.to_run_config()

        if self.offline:
            self._check_offline_options()

        self.baseline = take_sample(self._counter)
        self._log.info("testbed.baseline", task_count=self.baseline.task_count)

        if self.offline:
            self._log.info("testbed.offline", reason="environment resolution skipped")
            return None

        resolver = self._resolver or self._build_resolver()
        self.fixture, self._mock = resolver.resolve(self.run_config)
        return self.fixture

    def finish(self, suite_exit_code: int) -> int:
        """Close backend handles, check for leaks and compute the exit code."""
        self.close()

        if self.baseline is None:
            return suite_exit_code

        self.leak_report = self._leak_check(
            self.baseline.task_count,
            counter=self._counter,
            stream=self.leak_stream,
        )
        if self.leak_report.leaked:
            self._log.error(
                "testbed.run.failed",
                reason="task leak",
                before=self.leak_report.baseline,
                after=self.leak_report.final_count,
                suite_exit_code=suite_exit_code,
            )
            return LEAK_EXIT_CODE
        return suite_exit_code

    def run(self, suite: Callable[[Fixture | None], int]) -> int:
        """Run ``suite`` against the prepared environment and return the exit code."""
        fixture = self.prepare()
        try:
            suite_exit_code = suite(fixture)
        except BaseException:
            self.close()
            raise
        return self.finish(suite_exit_code)

    def close(self) -> None:
        """Close the cluster and then the mock, once."""
        if self._closed:
            return
        self._closed = True

        try:
            if self.fixture is not None:
                self.fixture.cluster.close()
        finally:
            if self._mock is not None:
                self._mock.close()

    def _check_offline_options(self) -> None:
        given = [opt for name, opt in ENVIRONMENT_OPTIONS.items() if name in self._explicit]
        if given:
            raise ConfigurationError(
                f"{', '.join(given)} cannot be used in offline mode",
                details={"options": given},
            )

    def _build_resolver(self) -> EnvironmentResolver:
        connector = load_connector(self._settings.connector)
        launcher = CouchbaseMockLauncher(self._settings.mock_path or None)
        return EnvironmentResolver(connector, launcher)
