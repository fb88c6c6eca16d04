"""Layering of raw config dicts.

Layers arrive lowest priority first: system file, user file, project file,
then DEVBRIDGE_* environment overrides. A layer only needs to mention the
keys it changes, so a project file holding just ``bridge.allowed_chat_ids``
keeps every other section from the user file.
"""

from __future__ import annotations

from functools import reduce
from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` laid on top; neither is modified.

    Sections (dicts) merge key by key. Any other value, lists included,
    replaces the lower one outright. A None in ``override`` means "unset
    here" and leaves the lower value in place.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        lower = merged.get(key)
        merged[key] = (
            deep_merge(lower, value)
            if isinstance(lower, dict) and isinstance(value, dict)
            else value
        )
    return merged


def merge_configs(*layers: dict[str, Any]) -> dict[str, Any]:
    """Fold config layers into one dict; empty layers are skipped."""
    return reduce(deep_merge, (layer for layer in layers if layer), {})
