import io
import json
import logging
import sys

from lm_flow.logging import JsonFormatter, configure_logging


def _record(msg: str, *args, exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord("lm_flow.test", logging.WARNING, __file__, 1, msg, args, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_lifts_flow_fields() -> None:
    line = JsonFormatter().format(
        _record("Step %s failed", "A", session_id="flow_1", step_index=0, attempt=2)
    )
    payload = json.loads(line)

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "lm_flow.test"
    assert payload["message"] == "Step A failed"
    assert payload["session_id"] == "flow_1"
    assert payload["step_index"] == 0
    assert payload["extra"] == {"attempt": 2}


def test_json_formatter_redacts_keys() -> None:
    key = "sk-" + "Z9y8" * 6
    try:
        raise RuntimeError(f"bad key {key}")
    except RuntimeError:
        record = _record(
            "Provider said: %s", f"Bearer {key}", exc_info=sys.exc_info(), detail=key
        )

    line = JsonFormatter().format(record)

    assert key not in line
    payload = json.loads(line)
    assert "[API_KEY_HIDDEN]" in payload["message"]
    assert payload["extra"]["detail"] == "[API_KEY_HIDDEN]"
    assert "RuntimeError" in payload["exception"]


def test_configure_logging_replaces_handlers() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    stream = io.StringIO()
    try:
        configure_logging("info", stream=stream)
        configure_logging("info", stream=stream)
        logging.getLogger("lm_flow.test").info("hello", extra={"flow_id": "chat"})

        json_handlers = [h for h in root.handlers if isinstance(h.formatter, JsonFormatter)]
        assert len(json_handlers) == 1
        assert logging.getLogger("openai").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert lines == [
        {
            "timestamp": lines[0]["timestamp"],
            "level": "INFO",
            "logger": "lm_flow.test",
            "message": "hello",
            "flow_id": "chat",
        }
    ]
