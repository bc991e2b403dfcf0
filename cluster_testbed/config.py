"""Testbed configuration management.

Configuration sources (in priority order):
1. Command-line options (passed in as init values)
2. Environment variables (TESTBED_ prefix, a few with short legacy names)
3. Defaults

``HarnessSettings`` holds the raw inputs. ``RunConfig`` is the immutable
snapshot the resolver works from, built once the feature directives parsed.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cluster_testbed.features import FeatureDirective, parse_features

DEFAULT_BUCKET = "default"

# Settings that only mean something when an environment is resolved, with
# the command-line option that sets each one.
ENVIRONMENT_OPTIONS: dict[str, str] = {
    "server": "--server",
    "user": "--user",
    "password": "--pass",
    "bucket": "--bucket",
    "version": "--server-version",
    "collection": "--collection-name",
    "scope": "--scope-name",
}


class HarnessSettings(BaseSettings):
    """Raw harness inputs."""

    model_config = SettingsConfigDict(
        env_prefix="TESTBED_",
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    server: str = ""
    user: str = ""
    password: str = Field(default="", validation_alias="TESTBED_PASS")
    bucket: str = DEFAULT_BUCKET
    version: str = Field(default="", validation_alias="TESTBED_VER")
    collection: str = Field(default="", validation_alias="TESTBED_COLL")
    scope: str = Field(default="", validation_alias="TESTBED_SCOP")
    features: str = Field(default="", validation_alias="TESTBED_FEAT")
    disable_logger: bool = Field(default=False, validation_alias="TESTBED_NOLOG")
    offline: bool = False

    # module:callable of the client's connect function
    connector: str = ""
    # Local mock jar; downloaded when empty
    mock_path: str = ""

    @field_validator("disable_logger", "offline", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> Any:
        """``0`` and ``false`` are false, any other non-empty string is true."""
        if isinstance(value, str):
            if value == "":
                return False
            return value != "0" and value.lower() != "false"
        return value

    def to_run_config(self) -> RunConfig:
        """Parse feature directives and freeze the environment inputs.

        Raises:
            ConfigurationError: If the feature directive string is malformed.
        """
        return RunConfig(
            server=self.server,
            user=self.user,
            password=self.password,
            bucket=self.bucket,
            version=self.version,
            collection=self.collection,
            scope=self.scope,
            features=tuple(parse_features(self.features)),
        )


class RunConfig(BaseModel):
    """Immutable snapshot of the resolved environment inputs."""

    model_config = ConfigDict(frozen=True)

    server: str = ""
    user: str = ""
    password: str = Field(default="", repr=False)
    bucket: str = DEFAULT_BUCKET
    version: str = ""
    collection: str = ""
    scope: str = ""
    features: tuple[FeatureDirective, ...] = ()


def load_settings(
    cli_values: Mapping[str, Any] | None = None,
) -> tuple[HarnessSettings, frozenset[str]]:
    """Build settings from command-line values layered over the environment.

    ``cli_values`` maps setting names to the values given on the command
    line; ``None`` means the option was not given.

    Returns:
        The settings and the names of settings given explicitly on the
        command line.
    """
    explicit = {k: v for k, v in (cli_values or {}).items() if v is not None}

    # Key aliased fields by their alias so they merge over the env values.
    init: dict[str, Any] = {}
    for name, value in explicit.items():
        field = HarnessSettings.model_fields[name]
        init[field.validation_alias or name] = value

    return HarnessSettings(**init), frozenset(explicit)
