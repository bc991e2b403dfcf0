"""Unit tests for the run driver."""

from __future__ import annotations

import io

import pytest

from cluster_testbed.config import HarnessSettings, load_settings
from cluster_testbed.driver import LEAK_EXIT_CODE, RunDriver, load_connector
from cluster_testbed.errors import ConfigurationError, EnvironmentSetupError
from cluster_testbed.resolver import EnvironmentResolver
from cluster_testbed.sentinel import LeakReport, LeakSample
from tests.fakes import FakeConnector, FakeMock, FakeMockLauncher, ScriptedCounter, connect


class RecordingLeakCheck:
    """Stands in for detect_leak; reports ``final`` as the last count."""

    def __init__(self, final: int | None = None) -> None:
        self.final = final
        self.calls: list[int] = []

    def __call__(self, baseline: int, *, counter, stream) -> LeakReport:
        self.calls.append(baseline)
        final = baseline if self.final is None else self.final
        return LeakReport(baseline=baseline, final=LeakSample(final), samples_taken=1)


def _driver(settings: HarnessSettings | None = None, explicit=frozenset(), **kwargs) -> RunDriver:
    kwargs.setdefault("leak_check", RecordingLeakCheck())
    kwargs.setdefault("counter", ScriptedCounter([5]))
    return RunDriver(settings or HarnessSettings(), explicit, **kwargs)


class TestOffline:
    def test_offline_skips_resolution(self, connector: FakeConnector, mock_launcher):
        resolver = EnvironmentResolver(connector, mock_launcher)
        driver = _driver(HarnessSettings(offline=True), frozenset({"offline"}), resolver=resolver)

        assert driver.prepare() is None

        assert mock_launcher.starts == []
        assert connector.calls == []
        assert driver.baseline is not None

    def test_offline_still_checks_leaks(self):
        leak_check = RecordingLeakCheck(final=6)
        driver = _driver(HarnessSettings(offline=True), leak_check=leak_check)

        driver.prepare()

        assert driver.finish(0) == LEAK_EXIT_CODE
        assert leak_check.calls == [5]

    def test_offline_rejects_explicit_environment_options(self):
        settings, explicit = load_settings(
            {"offline": True, "server": "couchbase://h", "bucket": "b"}
        )
        driver = _driver(settings, explicit)

        with pytest.raises(ConfigurationError) as exc_info:
            driver.prepare()

        assert "--server" in exc_info.value.message
        assert "--bucket" in exc_info.value.message
        assert driver.baseline is None

    def test_offline_ignores_environment_only_values(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("TESTBED_SERVER", "couchbase://env-host")
        settings, explicit = load_settings({"offline": True})

        assert _driver(settings, explicit).prepare() is None

    def test_features_are_still_parsed_offline(self):
        driver = _driver(HarnessSettings(offline=True, features="+txn,oops"))

        with pytest.raises(ConfigurationError):
            driver.prepare()


class TestPrepare:
    def test_bad_features_abort_before_resolution(self, connector: FakeConnector, mock_launcher):
        resolver = EnvironmentResolver(connector, mock_launcher)
        driver = _driver(HarnessSettings(features="txn"), resolver=resolver)

        with pytest.raises(ConfigurationError, match="failed to parse"):
            driver.prepare()

        assert mock_launcher.starts == []
        assert connector.calls == []

    def test_baseline_recorded_before_resolution(self, connector: FakeConnector):
        counter = ScriptedCounter([5, 9])
        resolver = EnvironmentResolver(connector, FakeMockLauncher())
        driver = _driver(resolver=resolver, counter=counter)

        driver.prepare()

        assert driver.baseline.task_count == 5
        assert counter.calls == 1

    def test_setup_failure_propagates(self):
        resolver = EnvironmentResolver(FakeConnector(error=RuntimeError("down")), FakeMockLauncher())
        driver = _driver(resolver=resolver)

        with pytest.raises(EnvironmentSetupError):
            driver.prepare()

    def test_missing_connector_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="connector is required"):
            _driver().prepare()


class TestRun:
    def test_suite_receives_fixture(self, connector: FakeConnector, mock_launcher):
        seen = []
        driver = _driver(resolver=EnvironmentResolver(connector, mock_launcher))

        code = driver.run(lambda fixture: seen.append(fixture) or 0)

        assert code == 0
        assert seen[0] is driver.fixture
        assert seen[0].is_mock

    def test_suite_failure_code_passes_through(self, connector: FakeConnector):
        driver = _driver(resolver=EnvironmentResolver(connector, FakeMockLauncher()))

        assert driver.run(lambda fixture: 2) == 2

    def test_leak_overrides_success(self, connector: FakeConnector):
        leak_check = RecordingLeakCheck(final=7)
        driver = _driver(
            resolver=EnvironmentResolver(connector, FakeMockLauncher()), leak_check=leak_check
        )

        assert driver.run(lambda fixture: 0) == LEAK_EXIT_CODE
        assert driver.leak_report.leaked
        assert driver.leak_report.final_count == 7

    def test_leak_check_runs_after_close(self, connector: FakeConnector):
        mock = FakeMock()
        order: list[str] = []

        def leak_check(baseline, *, counter, stream):
            order.append(f"leak-check (mock closed {mock.close_calls})")
            return LeakReport(baseline, LeakSample(baseline), 1)

        driver = _driver(
            resolver=EnvironmentResolver(connector, FakeMockLauncher(mock)), leak_check=leak_check
        )
        driver.run(lambda fixture: 0)

        assert order == ["leak-check (mock closed 1)"]
        assert connector.clusters[0].close_calls == 1

    def test_cluster_closed_before_mock(self):
        order: list[str] = []

        class OrderedMock(FakeMock):
            def close(self) -> None:
                order.append("mock")
                super().close()

        class OrderedConnector(FakeConnector):
            def __call__(self, connection_string, options):
                cluster = super().__call__(connection_string, options)
                cluster.close = lambda: order.append("cluster")
                return cluster

        resolver = EnvironmentResolver(OrderedConnector(), FakeMockLauncher(OrderedMock()))
        driver = _driver(resolver=resolver)

        driver.run(lambda fixture: 0)
        driver.close()

        assert order == ["cluster", "mock"]

    def test_suite_exception_still_closes(self, connector: FakeConnector):
        mock = FakeMock()
        driver = _driver(resolver=EnvironmentResolver(connector, FakeMockLauncher(mock)))

        def suite(fixture):
            raise RuntimeError("suite crashed")

        with pytest.raises(RuntimeError, match="suite crashed"):
            driver.run(suite)

        assert connector.clusters[0].close_calls == 1
        assert mock.close_calls == 1

    def test_finish_without_prepare(self):
        leak_check = RecordingLeakCheck()
        driver = _driver(leak_check=leak_check)

        assert driver.finish(4) == 4
        assert leak_check.calls == []

    def test_leak_stream_is_forwarded(self, connector: FakeConnector):
        stream = io.StringIO()
        received = []

        def leak_check(baseline, *, counter, stream):
            received.append(stream)
            return LeakReport(baseline, LeakSample(baseline), 1)

        driver = _driver(
            resolver=EnvironmentResolver(connector, FakeMockLauncher()),
            leak_check=leak_check,
            leak_stream=stream,
        )
        driver.run(lambda fixture: 0)

        assert received == [stream]


class TestLoadConnector:
    def test_loads_callable(self):
        assert load_connector("tests.fakes:connect") is connect

    @pytest.mark.parametrize(
        ("path", "message"),
        [
            ("", "connector is required"),
            ("tests.fakes", "module:callable"),
            (":FakeConnector", "module:callable"),
            ("no_such_module_here:connect", "could not be imported"),
            ("tests.fakes:missing", "not callable"),
        ],
    )
    def test_invalid(self, path: str, message: str):
        with pytest.raises(ConfigurationError, match=message):
            load_connector(path)
