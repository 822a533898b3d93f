"""Layered merge of config sources (system, user, project, environment)."""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` laid on top, without mutating either.

    Sections (dicts) merge key by key. Lists such as ``ignore_patterns`` are
    replaced whole. A None in ``override`` leaves the base value in place, so
    a file that only names ``server.port`` keeps every other setting.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        merged[key] = (
            deep_merge(current, value)
            if isinstance(current, dict) and isinstance(value, dict)
            else value
        )
    return merged


def merge_configs(*layers: dict[str, Any]) -> dict[str, Any]:
    """Fold config layers lowest-priority first; empty layers are skipped."""
    merged: dict[str, Any] = {}
    for layer in filter(None, layers):
        merged = deep_merge(merged, layer)
    return merged
