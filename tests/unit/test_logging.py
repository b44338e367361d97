from __future__ import annotations

import json
import logging

from task_flow_orchestrator.orchestrator.logging import (
    JsonFormatter,
    TextFormatter,
    configure_logging,
)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "task_flow_orchestrator.test", logging.INFO, __file__, 1, "Step finished", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_nests_extra_fields() -> None:
    line = JsonFormatter().format(_record(flow_id="flow_1_abc", step="sync.syncAllProjects"))

    payload = json.loads(line)
    assert payload["level"] == "INFO"
    assert payload["message"] == "Step finished"
    assert payload["extra"] == {"flow_id": "flow_1_abc", "step": "sync.syncAllProjects"}


def test_json_formatter_omits_empty_extra() -> None:
    payload = json.loads(JsonFormatter().format(_record()))

    assert "extra" not in payload


def test_text_formatter_appends_key_values() -> None:
    line = TextFormatter().format(_record(task_id="t1"))

    assert line.endswith("Step finished task_id=t1")


def test_configure_logging_does_not_duplicate_handlers() -> None:
    root = logging.getLogger()
    saved = (list(root.handlers), root.level)
    try:
        configure_logging("debug")
        configure_logging("info", "text")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert root.level == logging.INFO
        assert logging.getLogger("urllib3").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])
