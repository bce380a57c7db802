"""
Tests: log formatters.
"""

import json
import logging

from app.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(**extra):
    record = logging.LogRecord("app.services.approval_service", logging.INFO, __file__, 1,
                               "Approval finalized %s", ("APPROVED",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_includes_entity_ids():
    out = json.loads(JSONFormatter().format(_record(approval_id=4, quotation_id=9, user_id=2)))
    assert out["message"] == "Approval finalized APPROVED"
    assert out["approval_id"] == 4
    assert out["quotation_id"] == 9
    assert out["user_id"] == 2
    assert "workflow_id" not in out


def test_readable_tags():
    line = ReadableFormatter().format(_record(approval_id=4, workflow_id=1))
    assert "[approval=4 workflow=1]" in line


def test_readable_without_tags():
    line = ReadableFormatter().format(_record())
    assert line.endswith("Approval finalized APPROVED")
