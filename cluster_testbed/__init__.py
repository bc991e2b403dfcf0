"""cluster-testbed.

Integration-test environment orchestrator for a cluster data-store client:
resolves a real or mock cluster, shares one fixture across the suite, and
fails the run when background tasks leak.
"""

from importlib.metadata import PackageNotFoundError, version as _pkg_version

from cluster_testbed.config import HarnessSettings, RunConfig, load_settings
from cluster_testbed.driver import RunDriver
from cluster_testbed.errors import (
    ConfigurationError,
    EnvironmentSetupError,
    TestbedError,
)
from cluster_testbed.features import (
    FeatureDirective,
    format_features,
    parse_features,
    resolve_features,
)
from cluster_testbed.interfaces import ClusterOptions, PasswordAuthenticator
from cluster_testbed.observability import RecordingMeter, RecordingTracer
from cluster_testbed.resolver import EnvironmentResolver, Fixture, MockHandle
from cluster_testbed.sentinel import LeakReport, LeakSample, detect_leak
from cluster_testbed.version import Edition, VersionDescriptor, parse_version

__all__ = [
    # Run
    "RunDriver",
    "EnvironmentResolver",
    "Fixture",
    "MockHandle",
    # Config
    "HarnessSettings",
    "RunConfig",
    "load_settings",
    "FeatureDirective",
    "parse_features",
    "format_features",
    "resolve_features",
    # Client surface
    "ClusterOptions",
    "PasswordAuthenticator",
    "RecordingTracer",
    "RecordingMeter",
    # Versions
    "Edition",
    "VersionDescriptor",
    "parse_version",
    # Leak check
    "LeakReport",
    "LeakSample",
    "detect_leak",
    # Errors
    "TestbedError",
    "ConfigurationError",
    "EnvironmentSetupError",
]

try:
    __version__ = _pkg_version("cluster-testbed")
except PackageNotFoundError:
    __version__ = "unknown"
