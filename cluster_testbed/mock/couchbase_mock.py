"""Mock launcher backed by the CouchbaseMock jar.

The jar is started as a subprocess with a harakiri monitor: the mock connects
back to a socket we listen on, writes its REST port terminated by a NUL byte,
and from then on accepts JSON-line control commands on that same socket.
When the socket closes the mock exits on its own.

The jar is taken from an explicit path, or downloaded once into a cache
directory.
"""

from __future__ import annotations

import json
import os
import socket
import subprocess
from pathlib import Path
from typing import Any

import httpx
import structlog

from cluster_testbed.errors import EnvironmentSetupError
from cluster_testbed.mock.base import (
    BucketSpec,
    CommandCode,
    MockCluster,
    MockCommand,
    MockLauncher,
    MockTopology,
)

logger = structlog.get_logger()

MOCK_JAR_VERSION = "1.5.25"
MOCK_JAR_URL = (
    "https://github.com/couchbase/CouchbaseMock/releases/download/"
    f"{MOCK_JAR_VERSION}/CouchbaseMock-{MOCK_JAR_VERSION}.jar"
)
# Server release the mock jar emulates
MOCK_SERVER_VERSION = "5.1.0"

DEFAULT_STARTUP_TIMEOUT = 30.0
DEFAULT_CONTROL_TIMEOUT = 10.0
DOWNLOAD_TIMEOUT = 60.0


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME") or Path.home() / ".cache"
    return Path(base) / "cluster-testbed"


def get_mock_path(mock_path: str | None = None, *, cache_dir: Path | None = None) -> Path:
    """Locate the mock jar, downloading it if no local copy exists.

    Raises:
        EnvironmentSetupError: If an explicit path is missing or the download fails.
    """
    if mock_path:
        path = Path(mock_path)
        if not path.is_file():
            raise EnvironmentSetupError(
                "mock jar not found", details={"mock_path": str(path)}
            )
        return path

    cache_dir = cache_dir or default_cache_dir()
    path = cache_dir / f"CouchbaseMock-{MOCK_JAR_VERSION}.jar"
    if path.is_file():
        return path

    logger.info("testbed.mock.download", url=MOCK_JAR_URL, dest=str(path))
    cache_dir.mkdir(parents=True, exist_ok=True)
    partial = path.with_suffix(".jar.part")
    try:
        with httpx.stream(
            "GET", MOCK_JAR_URL, follow_redirects=True, timeout=DOWNLOAD_TIMEOUT
        ) as response:
            response.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)
    except httpx.HTTPError as e:
        partial.unlink(missing_ok=True)
        raise EnvironmentSetupError(
            "failed to download mock jar",
            details={"url": MOCK_JAR_URL, "error": str(e)},
        ) from e

    partial.replace(path)
    return path


class CouchbaseMock(MockCluster):
    """A running CouchbaseMock process and its control connection."""

    def __init__(
        self,
        process: subprocess.Popen,
        control_sock: socket.socket,
        rest_port: int,
        bucket_specs: list[BucketSpec],
        *,
        control_timeout: float = DEFAULT_CONTROL_TIMEOUT,
    ) -> None:
        self._process = process
        self._sock = control_sock
        self._sock.settimeout(control_timeout)
        self._reader = control_sock.makefile("rb")
        self._bucket_specs = bucket_specs
        self._data_ports: list[int] | None = None
        self._closed = False
        self.rest_port = rest_port
        self._log = logger.bind(component="couchbase_mock", pid=process.pid)

    def control(self, command: MockCommand) -> Any:
        if self._closed:
            raise RuntimeError("mock is closed")

        line = json.dumps(command.to_dict()) + "\n"
        self._log.debug("testbed.mock.control", command=command.code.value)
        try:
            self._sock.sendall(line.encode("utf-8"))
            raw = self._reader.readline()
        except OSError as e:
            raise EnvironmentSetupError(
                "mock control connection failed",
                details={"command": command.code.value, "error": str(e)},
            ) from e

        if not raw:
            raise EnvironmentSetupError(
                "mock closed the control connection",
                details={"command": command.code.value},
            )

        try:
            response = json.loads(raw)
        except ValueError as e:
            raise EnvironmentSetupError(
                "mock sent a malformed control response",
                details={
                    "command": command.code.value,
                    "response": raw[:200].decode("utf-8", "replace"),
                },
            ) from e
        if not isinstance(response, dict) or response.get("status") != "ok":
            raise EnvironmentSetupError(
                "mock rejected control command",
                details={"command": command.code.value, "response": response},
            )
        return response.get("payload")

    def version(self) -> str:
        return MOCK_SERVER_VERSION

    def data_ports(self) -> list[int]:
        if self._data_ports is None:
            bucket = self._bucket_specs[0].name if self._bucket_specs else "default"
            payload = self.control(
                MockCommand(CommandCode.GET_MCPORTS, {"bucket": bucket})
            )
            try:
                self._data_ports = [int(p) for p in payload]
            except (TypeError, ValueError) as e:
                raise EnvironmentSetupError(
                    "mock reported invalid data ports",
                    details={"payload": payload},
                ) from e
        return list(self._data_ports)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._reader.close()
        self._sock.close()
        self._process.terminate()
        try:
            self._process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            self._log.warning("testbed.mock.kill")
            self._process.kill()
            self._process.wait()
        self._log.info("testbed.mock.closed", returncode=self._process.returncode)


class CouchbaseMockLauncher(MockLauncher):
    """Starts :class:`CouchbaseMock` subprocesses."""

    def __init__(
        self,
        mock_path: str | None = None,
        *,
        java: str = "java",
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
    ) -> None:
        self._mock_path = mock_path
        self._java = java
        self._startup_timeout = startup_timeout

    def _command(
        self, jar: Path, monitor_port: int, topology: MockTopology, bucket_specs: list[BucketSpec]
    ) -> list[str]:
        return [
            self._java,
            "-jar",
            str(jar),
            "--harakiri-monitor",
            f"127.0.0.1:{monitor_port}",
            "--port",
            "0",
            "--nodes",
            str(topology.nodes),
            "--replicas",
            str(topology.replicas),
            "--vbuckets",
            str(topology.vbuckets),
            "--buckets",
            ",".join(spec.to_arg() for spec in bucket_specs),
        ]

    def start(self, topology: MockTopology, bucket_specs: list[BucketSpec]) -> CouchbaseMock:
        jar = get_mock_path(self._mock_path)

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.bind(("127.0.0.1", 0))
            listener.listen(1)
            listener.settimeout(self._startup_timeout)
            monitor_port = listener.getsockname()[1]

            argv = self._command(jar, monitor_port, topology, bucket_specs)
            logger.info("testbed.mock.start", argv=argv)
            try:
                process = subprocess.Popen(
                    argv,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as e:
                raise EnvironmentSetupError(
                    "failed to launch mock process",
                    details={"java": self._java, "error": str(e)},
                ) from e

            control_sock: socket.socket | None = None
            try:
                control_sock, _ = listener.accept()
                rest_port = self._read_rest_port(control_sock)
            except (OSError, ValueError) as e:
                if control_sock is not None:
                    control_sock.close()
                process.kill()
                process.wait()
                raise EnvironmentSetupError(
                    "mock did not report ready",
                    details={"timeout": self._startup_timeout, "error": str(e)},
                ) from e
        finally:
            listener.close()

        logger.info("testbed.mock.ready", pid=process.pid, rest_port=rest_port)
        return CouchbaseMock(process, control_sock, rest_port, bucket_specs)

    def _read_rest_port(self, sock: socket.socket) -> int:
        # One byte at a time: control replies follow the NUL on the same socket.
        sock.settimeout(self._startup_timeout)
        buf = b""
        while True:
            byte = sock.recv(1)
            if not byte:
                raise ValueError("mock closed before reporting its port")
            if byte == b"\0":
                break
            buf += byte
        return int(buf.decode("ascii"))
