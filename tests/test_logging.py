import json
import logging

from pipeline.json_logger import JsonFormatter
from settings.logging_config import configure_logging


def test_json_formatter_merges_extra_fields():
    record = logging.LogRecord("pipeline.orchestrator", logging.INFO, __file__, 1, "statement_completed", None, None)
    record.extra = {"statement_id": "s1", "imported": 4}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "statement_completed"
    assert payload["level"] == "INFO"
    assert payload["statement_id"] == "s1"
    assert payload["imported"] == 4
    assert payload["ts"].endswith("Z")


def test_configure_logging_switches_console_formatter():
    try:
        configure_logging(level="debug", json_output=True)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h.formatter, JsonFormatter) for h in root.handlers)
    finally:
        configure_logging(level=logging.INFO, json_output=False)
