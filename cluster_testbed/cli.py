"""``cluster-testbed`` command: pytest with the testbed plugin loaded.

    cluster-testbed tests/integration --server couchbase://10.0.0.5 --user admin ...

All arguments are passed through to pytest. The exit code is pytest's, turned
into 1 when the leak check fails.
"""

from __future__ import annotations

import sys

import pytest

from cluster_testbed import plugin


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    return int(pytest.main(args, plugins=[plugin]))


if __name__ == "__main__":
    sys.exit(main())
