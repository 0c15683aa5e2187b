"""The context mapping passed from node to node.

The context is a plain ``dict[str, Any]`` with a small schema on top:

- keys are non-empty strings
- values must be JSON-compatible (they are streamed inside events)
- ``previousOutput`` is reserved for the engine
- credential-looking keys are rejected so secrets never ride along

Merges are last-write-wins per key and always return a new dict.
"""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Mapping
from typing import Any

from lm_flow.flow.errors import MalformedRequest

PREVIOUS_OUTPUT = "previousOutput"
INPUT = "input"

RESERVED_KEYS: frozenset[str] = frozenset({PREVIOUS_OUTPUT})

_CREDENTIAL_KEY = re.compile(r"api[_-]?key|secret|token|password", re.IGNORECASE)


def _check_key(key: object, *, allow_reserved: bool) -> str:
    if not isinstance(key, str) or not key.strip():
        raise MalformedRequest(f"Context keys must be non-empty strings, got {key!r}")
    if not allow_reserved and key in RESERVED_KEYS:
        raise MalformedRequest(f"Context key '{key}' is reserved for the engine")
    if _CREDENTIAL_KEY.search(key):
        raise MalformedRequest(
            f"Context key '{key}' looks like a credential; pass credentials via aiConfig"
        )
    return key


def _check_value(key: str, value: Any) -> None:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise MalformedRequest(f"Context value for '{key}' is not JSON-compatible: {e}") from e


def validate_updates(
    updates: Mapping[str, Any] | None, *, allow_reserved: bool = False
) -> dict[str, Any]:
    """Validate caller-supplied context entries and return a detached copy."""
    if updates is None:
        return {}
    if not isinstance(updates, Mapping):
        raise MalformedRequest("Context updates must be an object")
    checked: dict[str, Any] = {}
    for key, value in updates.items():
        name = _check_key(key, allow_reserved=allow_reserved)
        _check_value(name, value)
        checked[name] = copy.deepcopy(value)
    return checked


def new_context(initial: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Build the starting context for a run. ``previousOutput`` is always present."""
    context = validate_updates(initial)
    context[PREVIOUS_OUTPUT] = None
    return context


def merge_context(
    base: Mapping[str, Any],
    updates: Mapping[str, Any] | None,
    *,
    allow_reserved: bool = False,
) -> dict[str, Any]:
    """Return ``base`` with ``updates`` applied (last write wins)."""
    merged = dict(base)
    merged.update(validate_updates(updates, allow_reserved=allow_reserved))
    merged.setdefault(PREVIOUS_OUTPUT, None)
    return merged


def with_output(
    base: Mapping[str, Any], output: Any, *, output_key: str | None = None
) -> dict[str, Any]:
    """Record a successful node output.

    Sets ``previousOutput`` and, when the node declares an ``outputKey``, also
    stores the output under that name so later nodes can address it.
    """
    updates: dict[str, Any] = {PREVIOUS_OUTPUT: output}
    if output_key:
        updates[output_key] = output
    return merge_context(base, updates, allow_reserved=True)


def current_payload(context: Mapping[str, Any]) -> Any:
    """What the next node should work on: the last output, else the run input."""
    previous = context.get(PREVIOUS_OUTPUT)
    if previous is not None:
        return previous
    return context.get(INPUT)
