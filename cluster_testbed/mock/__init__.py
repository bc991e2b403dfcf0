"""Mock cluster layer."""

from cluster_testbed.mock.base import (
    BucketSpec,
    BucketType,
    CommandCode,
    MockCluster,
    MockCommand,
    MockLauncher,
    MockTopology,
)
from cluster_testbed.mock.couchbase_mock import CouchbaseMock, CouchbaseMockLauncher

__all__ = [
    "BucketSpec",
    "BucketType",
    "CommandCode",
    "CouchbaseMock",
    "CouchbaseMockLauncher",
    "MockCluster",
    "MockCommand",
    "MockLauncher",
    "MockTopology",
]
