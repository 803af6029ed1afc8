"""Tests for the shared service_commons helpers."""

from __future__ import annotations

import json
import logging

import pytest
from pydantic import BaseModel
from service_commons.config import REDACTION_MARKER, get_safe_model_config
from service_commons.exceptions import ServiceError
from service_commons.logging import JSONFormatter, get_named_logger, setup_logging


class _Nested(BaseModel):
    api_key: str
    base_url: str


class _Example(BaseModel):
    name: str
    db_password: str
    nested: _Nested


@pytest.mark.unit
def test_safe_config_redacts_sensitive_keys() -> None:
    settings = _Example(
        name="svc",
        db_password="hunter2",
        nested=_Nested(api_key="abc", base_url="http://x"),
    )
    safe = get_safe_model_config(settings)
    assert safe["name"] == "svc"
    assert safe["db_password"] == REDACTION_MARKER
    assert safe["nested"]["api_key"] == REDACTION_MARKER
    assert safe["nested"]["base_url"] == "http://x"


@pytest.mark.unit
def test_service_error_envelope() -> None:
    error = ServiceError("TASK_NOT_FOUND", "Task not found", 404)
    assert error.to_dict() == {
        "error": "TASK_NOT_FOUND",
        "message": "Task not found",
        "details": {},
    }
    assert str(error) == "Task not found"


@pytest.mark.unit
def test_json_formatter_includes_extra() -> None:
    record = logging.LogRecord("svc.mod", logging.INFO, __file__, 1, "Task created", None, None)
    record.task_id = "t-1"

    data = json.loads(JSONFormatter().format(record))

    assert data["level"] == "INFO"
    assert data["logger"] == "svc.mod"
    assert data["message"] == "Task created"
    assert data["extra"] == {"task_id": "t-1"}


@pytest.mark.unit
def test_setup_logging_writes_daily_file(tmp_path) -> None:
    logger = setup_logging("INFO", "commons_test", str(tmp_path / "logs"))
    try:
        get_named_logger("commons_test", "child").info("hello", extra={"n": 1})
        for handler in logger.handlers:
            handler.flush()
        files = list((tmp_path / "logs").glob("*.log"))
        assert len(files) == 1
        assert '"message": "hello"' in files[0].read_text()
    finally:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()


@pytest.mark.unit
def test_setup_logging_rejects_unknown_level(tmp_path) -> None:
    with pytest.raises(ValueError, match="Invalid log level"):
        setup_logging("LOUD", "commons_test", str(tmp_path))


@pytest.mark.unit
def test_named_logger_accepts_qualified_names() -> None:
    assert get_named_logger("svc", "svc.module").name == "svc.module"
    assert get_named_logger("svc", "module").name == "svc.module"
