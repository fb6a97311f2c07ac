"""Tests for settings, logging and error mapping."""

from __future__ import annotations

import json
import logging

import pydantic
import pytest

from dripline.api_errors import (
    bad_request,
    dripline_error_to_response,
    get_status_code,
    not_found,
)
from dripline.config import JSONFormatter, SanitizingFilter, Settings
from dripline.errors import (
    ConcurrencyConflict,
    LimitExceeded,
    NotFoundError,
    StepExecutionError,
    TransientDispatchError,
    ValidationError,
)

# =============================================================================
# Settings
# =============================================================================


class TestSettings:
    def test_defaults(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        settings = Settings()
        assert settings.enrollment_max_contacts == 1000
        assert settings.sweep_batch_size == 200
        assert settings.sweep_interval_seconds == 60
        assert settings.engagement_retry_minutes == 15
        assert settings.webhook_max_attempts == 3
        assert settings.uses_default_database

    def test_env_override(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DRIPLINE_ENROLLMENT_MAX_CONTACTS", "250")
        monkeypatch.setenv("DRIPLINE_LOG_FORMAT", "JSON")
        settings = Settings()
        assert settings.enrollment_max_contacts == 250
        assert settings.log_format == "json"

    def test_yaml_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "dripline.yaml").write_text(
            "sweep_batch_size: 7\nmessage_provider_api_key: ${MISSING_KEY}\n"
        )
        settings = Settings()
        assert settings.sweep_batch_size == 7
        assert settings.message_provider_api_key is None

    def test_invalid_log_format(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        with pytest.raises(pydantic.ValidationError):
            Settings(log_format="xml")


# =============================================================================
# Logging
# =============================================================================


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("dripline.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:
    def test_json_formatter_includes_context(self) -> None:
        record = _record("State advanced", workflow_id="wf-1", state_id="s1", outcome="advanced")
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "State advanced"
        assert data["workflow_id"] == "wf-1"
        assert data["state_id"] == "s1"
        assert data["outcome"] == "advanced"
        assert "contact_id" not in data

    def test_sanitizing_filter(self) -> None:
        record = _record("calling with Bearer abcdefgh12345678 and api_key=secret")
        SanitizingFilter().filter(record)
        assert "abcdefgh12345678" not in record.msg
        assert "secret" not in record.msg
        assert "Bearer [REDACTED]" in record.msg


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    def test_to_dict(self) -> None:
        error = LimitExceeded("too many", limit=1000, requested=1500)
        assert error.to_dict() == {
            "error": "LIMIT_EXCEEDED",
            "message": "too many",
            "details": {"limit": 1000, "requested": 1500},
        }

    @pytest.mark.parametrize(
        "error,status",
        [
            (ValidationError("bad"), 400),
            (NotFoundError("missing"), 404),
            (LimitExceeded("too many"), 422),
            (StepExecutionError("broken step"), 422),
            (ConcurrencyConflict("raced"), 409),
            (TransientDispatchError("down"), 502),
        ],
    )
    def test_status_mapping(self, error, status) -> None:
        assert dripline_error_to_response(error).status_code == status

    def test_unknown_code_is_server_error(self) -> None:
        assert get_status_code("SOMETHING_ELSE") == 500

    def test_response_envelope(self) -> None:
        response = dripline_error_to_response(NotFoundError("gone", "workflow", "wf-1"), "r-1")
        body = json.loads(response.body)
        assert body == {
            "error": {
                "error_code": "NOT_FOUND",
                "message": "gone",
                "details": {"resource": "workflow", "id": "wf-1"},
                "request_id": "r-1",
            }
        }

    def test_helpers(self) -> None:
        assert not_found("Workflow", "wf-1").status_code == 404
        error = bad_request("nope", {"field": "x"})
        assert error.status_code == 400
        assert error.to_response().error.details == {"field": "x"}
