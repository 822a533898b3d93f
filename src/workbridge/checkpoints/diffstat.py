"""Per-file change counts for a unified diff."""

from __future__ import annotations

import re
from typing import Any

_DIFF_HEADER = re.compile(r"^diff --git a/.+ b/(.+)$")


def summarize_patch(diff: str) -> list[dict[str, Any]]:
    """Count added and deleted lines per file in a ``git diff`` patch.

    Returns:
        One ``{file, additions, deletions}`` dict per file, in patch order.
    """
    stats: dict[str, dict[str, Any]] = {}
    current: dict[str, Any] | None = None

    for line in diff.splitlines():
        header = _DIFF_HEADER.match(line)
        if header:
            current = stats.setdefault(
                header.group(1), {"file": header.group(1), "additions": 0, "deletions": 0}
            )
        elif current is None:
            continue
        elif line.startswith("+") and not line.startswith("+++"):
            current["additions"] += 1
        elif line.startswith("-") and not line.startswith("---"):
            current["deletions"] += 1

    return list(stats.values())
