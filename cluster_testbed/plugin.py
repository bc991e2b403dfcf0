"""pytest plugin: runs a pytest session inside a testbed run.

Enable it from a conftest::

    pytest_plugins = ["cluster_testbed.plugin"]

or run through the ``cluster-testbed`` command, which loads it for you.

Session flow:
- pytest_configure: resolve settings, configure logging, create the driver
- pytest_sessionstart: parse directives, record baseline, resolve environment
- tests use the ``testbed`` fixture (and cluster/bucket/scope/collection)
- pytest_sessionfinish: close handles, leak check, override exit status
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import pytest
import structlog

from cluster_testbed.config import RunConfig, load_settings
from cluster_testbed.driver import RunDriver
from cluster_testbed.errors import ConfigurationError, EnvironmentSetupError
from cluster_testbed.logging import configure_logging
from cluster_testbed.resolver import Fixture

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.config.argparsing import Parser
    from _pytest.main import Session
    from _pytest.nodes import Item

logger = structlog.get_logger()

DRIVER_KEY = pytest.StashKey[RunDriver]()

# setting name -> (option, help)
STRING_OPTIONS: dict[str, tuple[str, str]] = {
    "server": ("--server", "The connection string to connect to for a real server"),
    "user": ("--user", "The username to use to authenticate when using a real server"),
    "password": ("--pass", "The password to use to authenticate when using a real server"),
    "bucket": ("--bucket", "The bucket to use to test against"),
    "version": (
        "--server-version",
        "The server version being tested against (major.minor.patch.build_edition)",
    ),
    "collection": ("--collection-name", "The name of the collection to use"),
    "scope": ("--scope-name", "The name of the scope to use"),
    "features": (
        "--features",
        "The features that should be tested, as +feature/-feature separated by commas",
    ),
    "connector": ("--connector", "The client's connect function, as module:callable"),
    "mock_path": ("--mock-path", "Path to a local CouchbaseMock jar"),
}

FLAG_OPTIONS: dict[str, tuple[str, str]] = {
    "disable_logger": ("--disable-logger", "Whether to disable the logger"),
    "offline": ("--offline", "Skip environment resolution and run offline tests only"),
}

MARKERS = [
    "requires_feature(name, default=True): skip unless the feature is enabled for the run",
    "requires_version(minimum): skip when the server is older than minimum",
    "real_server_only: skip when running against the mock",
    "mock_only: skip when running against a real server",
]


def _dest(name: str) -> str:
    return f"testbed_{name}"


def pytest_addoption(parser: Parser) -> None:
    """Register testbed options. Unset options fall back to TESTBED_* env vars."""
    group = parser.getgroup("cluster-testbed", "cluster test environment")
    for name, (option, help_text) in STRING_OPTIONS.items():
        group.addoption(option, dest=_dest(name), default=None, help=help_text)
    for name, (option, help_text) in FLAG_OPTIONS.items():
        group.addoption(
            option, dest=_dest(name), action="store_const", const=True, default=None,
            help=help_text,
        )


def pytest_configure(config: Config) -> None:
    for marker in MARKERS:
        config.addinivalue_line("markers", marker)

    names = list(STRING_OPTIONS) + list(FLAG_OPTIONS)
    cli_values = {name: config.getoption(_dest(name)) for name in names}
    settings, explicit = load_settings(cli_values)

    # The client package logs under its top-level module name.
    client = settings.connector.partition(":")[0].split(".")[0]
    configure_logging(verbose=not settings.disable_logger, loggers=[client] if client else [])
    config.stash[DRIVER_KEY] = RunDriver(settings, explicit, leak_stream=io.StringIO())


def pytest_sessionstart(session: Session) -> None:
    driver = session.config.stash[DRIVER_KEY]
    try:
        driver.prepare()
    except ConfigurationError as e:
        raise pytest.UsageError(f"{e.code}: {e.message}") from e
    except EnvironmentSetupError as e:
        logger.error("testbed.setup.failed", **e.to_dict())
        pytest.exit(f"{e.code}: {e.message} {e.details}", returncode=pytest.ExitCode.INTERNAL_ERROR)


@pytest.hookimpl(trylast=True)
def pytest_sessionfinish(session: Session, exitstatus: int) -> None:
    """Runs after session fixtures are torn down."""
    driver = session.config.stash.get(DRIVER_KEY, None)
    if driver is None:
        return

    exit_code = driver.finish(int(exitstatus))

    report = driver.leak_report
    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if report is not None and reporter is not None:
        if report.leaked:
            reporter.write_line(
                f"Detected a task leak ({report.baseline} before != "
                f"{report.final_count} after), failing",
                red=True,
            )
            stream = driver.leak_stream
            if isinstance(stream, io.StringIO):
                reporter.write(stream.getvalue())
        else:
            reporter.write_line(
                f"No tasks appear to have leaked ({report.baseline} before == "
                f"{report.final_count} after)"
            )

    if exit_code != exitstatus:
        session.exitstatus = exit_code


def _markers_apply(item: Item, fixture: Fixture | None) -> None:
    markers = [
        item.get_closest_marker(name)
        for name in ("requires_feature", "requires_version", "real_server_only", "mock_only")
    ]
    if not any(markers):
        return
    if fixture is None:
        pytest.skip("requires a test environment (offline mode)")

    feature_marker, version_marker, real_marker, mock_marker = markers
    if feature_marker is not None:
        feature = feature_marker.args[0]
        default = feature_marker.kwargs.get("default", True)
        enabled = fixture.supports_feature(feature)
        if not (default if enabled is None else enabled):
            pytest.skip(f"feature {feature!r} is not enabled for this run")
    if version_marker is not None:
        minimum = version_marker.args[0]
        if fixture.version.lower_than(minimum):
            pytest.skip(f"requires server {minimum} or newer (have {fixture.version})")
    if real_marker is not None and fixture.is_mock:
        pytest.skip("not supported by the mock")
    if mock_marker is not None and not fixture.is_mock:
        pytest.skip("only runs against the mock")


def pytest_runtest_setup(item: Item) -> None:
    driver = item.config.stash.get(DRIVER_KEY, None)
    if driver is not None:
        _markers_apply(item, driver.fixture)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def testbed_config(pytestconfig: pytest.Config) -> RunConfig:
    """The run's resolved inputs, available offline too."""
    run_config = pytestconfig.stash[DRIVER_KEY].run_config
    assert run_config is not None, "testbed session did not start"
    return run_config


@pytest.fixture(scope="session")
def testbed(pytestconfig: pytest.Config) -> Fixture:
    """The shared environment fixture. Skips offline."""
    fixture = pytestconfig.stash[DRIVER_KEY].fixture
    if fixture is None:
        pytest.skip("requires a test environment (offline mode)")
    return fixture


@pytest.fixture(scope="session")
def cluster(testbed: Fixture):
    return testbed.cluster


@pytest.fixture(scope="session")
def bucket(testbed: Fixture):
    return testbed.bucket


@pytest.fixture(scope="session")
def scope(testbed: Fixture):
    return testbed.scope


@pytest.fixture(scope="session")
def collection(testbed: Fixture):
    return testbed.collection


@pytest.fixture(scope="session")
def server_version(testbed: Fixture):
    return testbed.version


@pytest.fixture(scope="session")
def tracer(testbed: Fixture):
    return testbed.tracer


@pytest.fixture(scope="session")
def meter(testbed: Fixture):
    return testbed.meter
