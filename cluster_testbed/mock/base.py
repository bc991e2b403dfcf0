"""Mock cluster abstraction.

A mock is a locally started stand-in for a real cluster. The harness only
starts it, sends it control commands, asks for its version and data ports,
and closes it. Everything else about it is opaque.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BucketType(str, Enum):
    """Bucket type understood by the mock."""

    COUCHBASE = "couchbase"
    MEMCACHED = "memcached"


@dataclass(frozen=True)
class BucketSpec:
    """A bucket the mock should create on startup."""

    name: str
    type: BucketType = BucketType.COUCHBASE
    password: str = ""

    def to_arg(self) -> str:
        """Render as the mock's ``name:password:type`` bucket argument."""
        return f"{self.name}:{self.password}:{self.type.value}"


@dataclass(frozen=True)
class MockTopology:
    """Cluster shape of the mock."""

    nodes: int
    replicas: int
    vbuckets: int


class CommandCode(str, Enum):
    """Control commands sent to the mock."""

    SET_CCCP = "SET_CCCP"
    SET_SASL_MECHANISMS = "SET_SASL_MECHANISMS"
    GET_MCPORTS = "GET_MCPORTS"


@dataclass(frozen=True)
class MockCommand:
    """A control command and its payload."""

    code: CommandCode
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.code.value, "payload": self.payload}


class MockCluster(ABC):
    """A started mock instance."""

    @abstractmethod
    def control(self, command: MockCommand) -> Any:
        """Send a control command and return its response payload."""
        ...

    @abstractmethod
    def version(self) -> str:
        """Server version string the mock emulates."""
        ...

    @abstractmethod
    def data_ports(self) -> list[int]:
        """Data-service (memcached) ports, one per node."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop the mock. Must be safe to call once after a failed start."""
        ...


class MockLauncher(ABC):
    """Starts mock instances."""

    @abstractmethod
    def start(self, topology: MockTopology, bucket_specs: list[BucketSpec]) -> MockCluster:
        """Start a mock and block until it accepts control commands.

        Raises:
            EnvironmentSetupError: If the mock cannot be started.
        """
        ...
