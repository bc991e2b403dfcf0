"""Feature directive parsing.

A directive string is a comma separated list of signed feature codes::

    +txn,-query,+collections

``+`` marks the feature as available for the run, ``-`` as unavailable.
Feature codes are opaque here; whether a code means anything is up to the
tests that check it.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from cluster_testbed.errors import ConfigurationError

DELIMITER = ","
ENABLE_SIGN = "+"
DISABLE_SIGN = "-"


@dataclass(frozen=True)
class FeatureDirective:
    """A signed toggle for a single feature code."""

    feature: str
    enabled: bool

    def __str__(self) -> str:
        sign = ENABLE_SIGN if self.enabled else DISABLE_SIGN
        return f"{sign}{self.feature}"


def parse_features(raw: str) -> list[FeatureDirective]:
    """Parse a directive string into an ordered list of directives.

    Empty tokens (``"a,,b"`` or a trailing comma) are skipped. Duplicate
    feature codes are kept in order; last-wins is applied by consumers
    through :func:`resolve_features`.

    Raises:
        ConfigurationError: If a token does not start with ``+`` or ``-``.
    """
    directives: list[FeatureDirective] = []
    for token in raw.split(DELIMITER):
        if not token:
            continue

        sign, feature = token[0], token[1:]
        if sign == ENABLE_SIGN:
            directives.append(FeatureDirective(feature=feature, enabled=True))
        elif sign == DISABLE_SIGN:
            directives.append(FeatureDirective(feature=feature, enabled=False))
        else:
            raise ConfigurationError(
                "failed to parse specified feature codes",
                details={"token": token, "raw": raw},
            )

    return directives


def format_features(directives: Iterable[FeatureDirective]) -> str:
    """Serialize directives back into the ``+a,-b`` form."""
    return DELIMITER.join(str(d) for d in directives)


def resolve_features(directives: Iterable[FeatureDirective]) -> dict[str, bool]:
    """Collapse directives into a feature -> enabled map, later ones winning."""
    resolved: dict[str, bool] = {}
    for directive in directives:
        resolved[directive.feature] = directive.enabled
    return resolved
