"""Reference pre-processing executor.

Shapes the payload before a model call: formatting, truncation, reshaping
into a target structure, and field validation. Works on the current payload
(the previous node's output, or the run input for the first node).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, ClassVar

from lm_flow.flow.context import current_payload
from lm_flow.flow.models import Credentials
from lm_flow.nodes.executor import ExecutorError, NodeExecutor

logger = logging.getLogger(__name__)

OPERATIONS = (
    "passthrough",
    "format",
    "summarize",
    "organize",
    "transform-message",
    "validate-input",
    "validate-and-transform",
)

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, int | float) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


def format_text(value: Any, fmt: str | None) -> Any:
    if not isinstance(value, str):
        return value
    if fmt == "json":
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return {"text": value}
    if fmt == "text":
        return value.strip()
    if fmt == "structured":
        return {"content": value, "structured": False}
    return value


def summarize_text(value: Any, max_length: int) -> Any:
    if not isinstance(value, str) or len(value) <= max_length:
        return value
    return value[:max_length] + "..."


def organize_output(value: Any, fmt: str | None) -> Any:
    if fmt == "json" and isinstance(value, dict | list):
        return json.dumps(value, indent=2, ensure_ascii=False)
    return value


def reshape(value: Any, target: Mapping[str, Any] | None) -> Any:
    """Project ``value`` onto ``target``'s keys, using target values as defaults."""
    if not target or not isinstance(value, dict):
        return value
    return {
        key: value[key] if value.get(key) is not None else default
        for key, default in target.items()
    }


def validate_fields(value: Any, rules: list[Mapping[str, Any]]) -> None:
    if not isinstance(value, dict):
        raise ExecutorError("Input must be an object")
    for rule in rules:
        field = rule.get("field")
        if not isinstance(field, str):
            raise ExecutorError("Validation rule is missing 'field'")
        present = value.get(field)
        if rule.get("required") and present is None:
            raise ExecutorError(f"Field {field} is required")
        expected = rule.get("type")
        if present is not None and expected:
            check = _TYPE_CHECKS.get(expected)
            if check is not None and not check(present):
                raise ExecutorError(f"Field {field} must be of type {expected}")


class TransformExecutor(NodeExecutor):
    node_type: ClassVar[str] = "transform"

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        credentials: Credentials | None,
    ) -> Any:
        operation = config.get("operation", "passthrough")
        payload = current_payload(context)
        logger.debug("Running transform", extra={"operation": operation})

        if operation == "passthrough":
            return payload
        if operation == "format":
            return format_text(payload, config.get("format"))
        if operation == "summarize":
            max_length = config.get("maxLength", 1000)
            if not isinstance(max_length, int) or max_length <= 0:
                raise ExecutorError("maxLength must be a positive integer")
            return summarize_text(payload, max_length)
        if operation == "organize":
            return organize_output(payload, config.get("format"))
        if operation == "transform-message":
            return reshape(payload, config.get("targetStructure"))
        if operation == "validate-input":
            validate_fields(payload, config.get("validationRules", []))
            return payload
        if operation == "validate-and-transform":
            validate_fields(payload, config.get("validationRules", []))
            return reshape(payload, config.get("targetStructure"))

        raise ExecutorError(
            f"Unknown transform operation '{operation}'. Expected one of: {', '.join(OPERATIONS)}"
        )
