"""Testbed error types.

Every failure in the harness is one of two terminal kinds:

- ConfigurationError: rejected input, raised before any resource is allocated.
- EnvironmentSetupError: the backend could not be prepared.

Neither is retried. The Run Driver's caller (pytest plugin or CLI) turns them
into the run abort. A detected leak is not an exception; see
``cluster_testbed.sentinel.LeakReport``.
"""

from __future__ import annotations

from typing import Any


class TestbedError(Exception):
    """Base error for all testbed exceptions."""

    __test__ = False  # keep pytest from collecting it

    code: str = "testbed_error"
    message: str = "The test environment could not be prepared"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured log output."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(TestbedError):
    """Bad option combination or malformed feature directive."""

    code = "configuration_error"
    message = "Invalid test configuration"


class EnvironmentSetupError(TestbedError):
    """Mock failed to start, connect failed, or version was unparsable."""

    code = "environment_setup_error"
    message = "Test environment setup failed"

