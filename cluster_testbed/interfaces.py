"""Surface of the client under test, as seen by the harness.

The harness never implements these; it receives a ``connect`` callable from
the client package and only ever calls the lookups below on what it returns.
Scope/collection lookups are local and must not hit the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cluster_testbed.observability import RecordingMeter, RecordingTracer

DEFAULT_SCOPE_NAME = "_default"
DEFAULT_COLLECTION_NAME = "_default"


@dataclass(frozen=True)
class PasswordAuthenticator:
    """Username/password credentials passed to ``connect``."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"PasswordAuthenticator(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class ClusterOptions:
    """Options passed to ``connect`` alongside the connection string."""

    authenticator: PasswordAuthenticator
    tracer: RecordingTracer | None = None
    meter: RecordingMeter | None = None


@runtime_checkable
class Collection(Protocol):
    @property
    def name(self) -> str: ...


@runtime_checkable
class Scope(Protocol):
    @property
    def name(self) -> str: ...

    def collection(self, name: str) -> Any: ...


@runtime_checkable
class Bucket(Protocol):
    @property
    def name(self) -> str: ...

    def scope(self, name: str) -> Any: ...

    def default_scope(self) -> Any: ...


@runtime_checkable
class Cluster(Protocol):
    def bucket(self, name: str) -> Any: ...

    def close(self) -> None: ...


class Connector(Protocol):
    """``connect(connection_string, options) -> Cluster``; raises on failure."""

    def __call__(self, connection_string: str, options: ClusterOptions) -> Cluster: ...
