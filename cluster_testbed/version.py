"""Server version descriptor used for version-gated tests."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class Edition(str, Enum):
    """Server edition."""

    ENTERPRISE = "enterprise"
    COMMUNITY = "community"


# major[.minor[.patch[(.|-)build]]][(-|_)edition]
_VERSION_RE = re.compile(
    r"^(?P<major>\d+)"
    r"(?:\.(?P<minor>\d+)"
    r"(?:\.(?P<patch>\d+)"
    r"(?:[.-](?P<build>\d+))?)?)?"
    r"(?:[-_](?P<edition>[A-Za-z]+))?$"
)


@dataclass(frozen=True)
class VersionDescriptor:
    """Parsed server version plus whether the backend is the mock."""

    major: int
    minor: int = 0
    patch: int = 0
    build: int = 0
    edition: Edition = Edition.ENTERPRISE
    is_mock: bool = False

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def _coerce(self, other: VersionDescriptor | str) -> VersionDescriptor:
        if isinstance(other, str):
            return parse_version(other)
        return other

    def lower_than(self, other: VersionDescriptor | str) -> bool:
        """True if this release is strictly older than ``other``.

        Build numbers are ignored; gating is done on releases.
        """
        return self.release < self._coerce(other).release

    def at_least(self, other: VersionDescriptor | str) -> bool:
        return not self.lower_than(other)

    def same_release(self, other: VersionDescriptor | str) -> bool:
        return self.release == self._coerce(other).release

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.build:
            text += f"-{self.build}"
        return f"{text}-{self.edition.value}"


def parse_version(version: str, *, is_mock: bool = False) -> VersionDescriptor:
    """Parse a version string such as ``7.1.3``, ``6.5.0-4960-enterprise``
    or ``6.6.0.7909_community``.

    Missing components default to zero and a missing edition to enterprise.

    Raises:
        ValueError: If the string is not a recognizable version.
    """
    match = _VERSION_RE.match(version.strip())
    if match is None:
        raise ValueError(f"invalid server version: {version!r}")

    edition_str = match.group("edition")
    if edition_str is None:
        edition = Edition.ENTERPRISE
    else:
        try:
            edition = Edition(edition_str.lower())
        except ValueError:
            raise ValueError(
                f"invalid server edition {edition_str!r} in version {version!r}"
            ) from None

    return VersionDescriptor(
        major=int(match.group("major")),
        minor=int(match.group("minor") or 0),
        patch=int(match.group("patch") or 0),
        build=int(match.group("build") or 0),
        edition=edition,
        is_mock=is_mock,
    )
