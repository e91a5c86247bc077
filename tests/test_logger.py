import json
import logging

from stockai.logger import JsonFormatter


def test_json_formatter_includes_extra_fields():
    record = logging.makeLogRecord(
        {"name": "stockai.test", "levelname": "INFO", "msg": "quota exceeded: %s", "args": ("level2",)}
    )
    record.user_id = "user-1"
    data = json.loads(JsonFormatter().format(record))
    assert data["message"] == "quota exceeded: level2"
    assert data["level"] == "info"
    assert data["logger"] == "stockai.test"
    assert data["user_id"] == "user-1"
    assert "args" not in data
