"""
Runbook Sync Kernel — Structural Delta

Diff and patch for JSON-like dict documents.

A delta mirrors the document's keys:

    [new]          key added
    [old, new]     key replaced
    [old, 0, 0]    key removed
    {...}          nested delta for a dict value

Only dicts are recursed into; every other value (lists included) is atomic.
An empty delta means no change.

Patching is tolerant so deltas can be replayed on a baseline that moved on:
a nested delta whose target is gone is skipped and removing a missing key
is a no-op.
"""

from __future__ import annotations

import copy
from typing import Any

Delta = dict[str, Any]


def diff(old: dict[str, Any], new: dict[str, Any]) -> Delta:
    delta: Delta = {}
    for key, old_value in old.items():
        if key not in new:
            delta[key] = [copy.deepcopy(old_value), 0, 0]
            continue
        new_value = new[key]
        if isinstance(old_value, dict) and isinstance(new_value, dict):
            nested = diff(old_value, new_value)
            if nested:
                delta[key] = nested
        elif old_value != new_value or type(old_value) is not type(new_value):
            delta[key] = [copy.deepcopy(old_value), copy.deepcopy(new_value)]
    for key, new_value in new.items():
        if key not in old:
            delta[key] = [copy.deepcopy(new_value)]
    return delta


def patch(document: dict[str, Any], delta: Delta) -> dict[str, Any]:
    """Apply delta to document in place and return it."""
    for key, change in delta.items():
        if isinstance(change, dict):
            target = document.get(key)
            if isinstance(target, dict):
                patch(target, change)
            continue
        if not isinstance(change, list):
            continue
        if len(change) == 1:
            document[key] = copy.deepcopy(change[0])
        elif len(change) == 2:
            document[key] = copy.deepcopy(change[1])
        elif len(change) == 3 and change[1] == 0 and change[2] == 0:
            document.pop(key, None)
    return document


def patched(document: dict[str, Any], delta: Delta) -> dict[str, Any]:
    """Copy of document with delta applied."""
    return patch(copy.deepcopy(document), delta)


def replay(document: dict[str, Any], deltas: list[Delta]) -> dict[str, Any]:
    """Copy of document with every delta applied in order."""
    result = copy.deepcopy(document)
    for delta in deltas:
        patch(result, delta)
    return result


def is_empty(delta: Delta | None) -> bool:
    return not delta
