"""Environment resolver.

Turns a :class:`RunConfig` into the shared :class:`Fixture`, backed either by
a real cluster or by a freshly started mock:

1. Mode selection: no server address means MOCK, otherwise REAL.
2. MOCK: start the mock with a fixed small topology, force the client onto
   the real-cluster negotiation path (CCCP push, SCRAM-SHA512 only), and
   derive connection string, bucket, credentials and version from it.
3. REAL: use the supplied connection string and credentials verbatim.
4. Connect with a fresh recording tracer and meter.
5. Parse the version.
6. Look up bucket, scope and collection on the connected cluster.

Any failure raises ConfigurationError or EnvironmentSetupError; whatever was
already opened is closed first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from cluster_testbed.config import RunConfig
from cluster_testbed.errors import ConfigurationError, EnvironmentSetupError, TestbedError
from cluster_testbed.features import FeatureDirective, resolve_features
from cluster_testbed.interfaces import (
    DEFAULT_COLLECTION_NAME,
    Cluster,
    ClusterOptions,
    Connector,
    PasswordAuthenticator,
)
from cluster_testbed.mock.base import (
    BucketSpec,
    BucketType,
    CommandCode,
    MockCluster,
    MockCommand,
    MockLauncher,
    MockTopology,
)
from cluster_testbed.observability import RecordingMeter, RecordingTracer
from cluster_testbed.version import VersionDescriptor, parse_version

logger = structlog.get_logger()

# Used when a real server is given without a version
DEFAULT_SERVER_VERSION = "6.0.0"

MOCK_TOPOLOGY = MockTopology(nodes=4, replicas=1, vbuckets=64)
MOCK_BUCKET = "default"
MOCK_USERNAME = "Administrator"
MOCK_PASSWORD = "password"
MOCK_SASL_MECHANISMS = ["SCRAM-SHA512"]
MOCK_HOST = "127.0.0.1"


class Mode(str, Enum):
    """Which backend the run targets."""

    MOCK = "mock"
    REAL = "real"


@dataclass
class MockHandle:
    """A started mock plus the endpoints derived from it."""

    mock: MockCluster
    endpoints: list[str]
    _closed: bool = field(default=False, repr=False)

    @property
    def connection_string(self) -> str:
        return "couchbase://" + ",".join(self.endpoints)

    def close(self) -> None:
        """Close the mock. Later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        self.mock.close()


@dataclass(frozen=True)
class Fixture:
    """Shared handle set for every test in the run."""

    cluster: Cluster
    bucket: Any
    scope: Any
    collection: Any
    version: VersionDescriptor
    tracer: RecordingTracer
    meter: RecordingMeter
    connection_string: str
    authenticator: PasswordAuthenticator
    features: tuple[FeatureDirective, ...] = ()
    mock: MockHandle | None = None

    @property
    def is_mock(self) -> bool:
        return self.version.is_mock

    def supports_feature(self, feature: str) -> bool | None:
        """Whether a directive enabled ``feature``.

        Returns None when no directive mentions it, leaving the default to
        the caller.
        """
        return resolve_features(self.features).get(feature)


def select_mode(config: RunConfig) -> Mode:
    """Pick the backend.

    Raises:
        ConfigurationError: If a version is given without a server.
    """
    if config.server:
        return Mode.REAL
    if config.version:
        raise ConfigurationError(
            "version cannot be specified with mock",
            details={"version": config.version},
        )
    return Mode.MOCK


class EnvironmentResolver:
    """Builds the run's fixture from a :class:`RunConfig`."""

    def __init__(self, connector: Connector, mock_launcher: MockLauncher | None = None) -> None:
        self._connector = connector
        self._mock_launcher = mock_launcher
        self._log = logger.bind(component="environment_resolver")

    def resolve(self, config: RunConfig) -> tuple[Fixture, MockHandle | None]:
        """Resolve the environment and assemble the fixture.

        Raises:
            ConfigurationError: On an invalid option combination.
            EnvironmentSetupError: If the backend cannot be prepared.
        """
        mode = select_mode(config)
        self._log.info("testbed.resolve.mode", mode=mode.value)

        mock_handle: MockHandle | None = None
        cluster: Cluster | None = None
        try:
            if mode is Mode.MOCK:
                mock_handle = self._start_mock()
                conn_str = mock_handle.connection_string
                bucket_name = MOCK_BUCKET
                auth = PasswordAuthenticator(MOCK_USERNAME, MOCK_PASSWORD)
                version_str = self._mock_version(mock_handle.mock)
            else:
                conn_str = config.server
                bucket_name = config.bucket
                auth = PasswordAuthenticator(config.user, config.password)
                version_str = config.version or DEFAULT_SERVER_VERSION

            tracer = RecordingTracer()
            meter = RecordingMeter()
            cluster = self._connect(conn_str, ClusterOptions(auth, tracer, meter))

            try:
                version = parse_version(version_str, is_mock=mode is Mode.MOCK)
            except ValueError as e:
                raise EnvironmentSetupError(
                    "failed to parse server version",
                    details={"version": version_str, "error": str(e)},
                ) from e

            bucket, scope, collection = self._open_keyspace(cluster, bucket_name, config)
        except BaseException:
            self._release(cluster, mock_handle)
            raise

        self._log.info(
            "testbed.resolve.complete",
            mode=mode.value,
            connection_string=conn_str,
            bucket=bucket_name,
            version=str(version),
        )

        fixture = Fixture(
            cluster=cluster,
            bucket=bucket,
            scope=scope,
            collection=collection,
            version=version,
            tracer=tracer,
            meter=meter,
            connection_string=conn_str,
            authenticator=auth,
            features=config.features,
            mock=mock_handle,
        )
        return fixture, mock_handle

    def _start_mock(self) -> MockHandle:
        if self._mock_launcher is None:
            raise ConfigurationError("no server given and no mock launcher available")

        try:
            mock = self._mock_launcher.start(
                MOCK_TOPOLOGY, [BucketSpec(name=MOCK_BUCKET, type=BucketType.COUCHBASE)]
            )
        except TestbedError:
            raise
        except Exception as e:
            raise EnvironmentSetupError(
                "failed to start mock", details={"error": str(e)}
            ) from e

        try:
            mock.control(MockCommand(CommandCode.SET_CCCP, {"enabled": "true"}))
            mock.control(
                MockCommand(CommandCode.SET_SASL_MECHANISMS, {"mechs": MOCK_SASL_MECHANISMS})
            )
            endpoints = [f"{MOCK_HOST}:{port}" for port in mock.data_ports()]
        except TestbedError:
            mock.close()
            raise
        except Exception as e:
            mock.close()
            raise EnvironmentSetupError(
                "failed to start mock", details={"error": str(e)}
            ) from e
        except BaseException:
            mock.close()
            raise

        self._log.info("testbed.resolve.mock_started", endpoints=endpoints)
        return MockHandle(mock=mock, endpoints=endpoints)

    def _mock_version(self, mock: MockCluster) -> str:
        try:
            return mock.version()
        except TestbedError:
            raise
        except Exception as e:
            raise EnvironmentSetupError(
                "failed to read mock version", details={"error": str(e)}
            ) from e

    def _release(self, cluster: Cluster | None, mock_handle: MockHandle | None) -> None:
        """Close the cluster, then the mock, after a failed resolve."""
        try:
            if cluster is not None:
                cluster.close()
        finally:
            if mock_handle is not None:
                mock_handle.close()

    def _connect(self, conn_str: str, options: ClusterOptions) -> Cluster:
        try:
            return self._connector(conn_str, options)
        except Exception as e:
            raise EnvironmentSetupError(
                "failed to connect to cluster",
                details={"connection_string": conn_str, "error": str(e)},
            ) from e

    def _open_keyspace(
        self, cluster: Cluster, bucket_name: str, config: RunConfig
    ) -> tuple[Any, Any, Any]:
        try:
            bucket = cluster.bucket(bucket_name)
            scope = bucket.scope(config.scope) if config.scope else bucket.default_scope()
            collection = scope.collection(config.collection or DEFAULT_COLLECTION_NAME)
        except Exception as e:
            raise EnvironmentSetupError(
                "failed to open bucket, scope or collection",
                details={
                    "bucket": bucket_name,
                    "scope": config.scope,
                    "collection": config.collection,
                    "error": str(e),
                },
            ) from e
        return bucket, scope, collection
