"""
Tests for configuration loading and logging setup.
"""

import logging
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.wisphub.config import (
    DEFAULT_BASE_URL,
    DEFAULT_TICKET_WRITE_DENYLIST,
    ServerConfig,
    load_config,
)
from src.wisphub.errors import ValidationError
from src.wisphub.logging_config import KeyValueFormatter, sanitize_args


WISPHUB_VARS = [
    "WISPHUB_API_KEY",
    "WISPHUB_BASE_URL",
    "WISPHUB_TIMEOUT",
    "WISPHUB_RETRY_ATTEMPTS",
    "WISPHUB_CLIENT_LOOKUP_ATTEMPTS",
    "WISPHUB_CLIENT_UPDATE_ENDPOINTS",
    "WISPHUB_CURRENCY",
    "WISPHUB_CACHE_CLIENTS_MS",
    "WISPHUB_CACHE_TICKETS_MS",
    "WISPHUB_CACHE_BALANCES_MS",
    "WISPHUB_TICKET_WRITE_DENYLIST",
    "WISPHUB_STRICT_VERIFICATION",
    "WISPHUB_DEFAULT_DEPARTMENT",
    "WISPHUB_DEFAULT_TECHNICIAN",
    "WISPHUB_FINISHED_BY",
    "WISPHUB_REPORT_ORIGIN",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty WispHub environment and an empty .env file."""
    for name in WISPHUB_VARS:
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("")
    return env_file


class TestLoadConfig:
    def test_defaults(self, clean_env, monkeypatch):
        monkeypatch.setenv("WISPHUB_API_KEY", "abc")

        config = load_config(str(clean_env))

        assert config.api_key == "abc"
        assert config.base_url == DEFAULT_BASE_URL
        assert config.timeout == 30.0
        assert config.retry_attempts == 3
        assert config.client_lookup_attempts == 3
        assert config.cache.clients == 300_000
        assert config.cache.tickets == 300_000
        assert config.cache.balances == 60_000
        assert config.ticket_write_denylist == DEFAULT_TICKET_WRITE_DENYLIST
        assert config.strict_verification is False

    def test_missing_api_key(self, clean_env):
        with pytest.raises(ValidationError) as exc_info:
            load_config(str(clean_env))

        assert "WISPHUB_API_KEY" in str(exc_info.value)

    def test_missing_api_key_without_validation(self, clean_env):
        assert load_config(str(clean_env), validate=False).api_key == ""

    def test_env_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("WISPHUB_API_KEY", "abc")
        monkeypatch.setenv("WISPHUB_BASE_URL", "https://wisphub.example/")
        monkeypatch.setenv("WISPHUB_RETRY_ATTEMPTS", "1")
        monkeypatch.setenv("WISPHUB_CACHE_BALANCES_MS", "0")
        monkeypatch.setenv("WISPHUB_TICKET_WRITE_DENYLIST", "respuestas, adjuntos ,")
        monkeypatch.setenv("WISPHUB_STRICT_VERIFICATION", "yes")

        config = load_config(str(clean_env))

        assert config.base_url == "https://wisphub.example"
        assert config.retry_attempts == 1
        assert config.cache.balances == 0
        assert config.ticket_write_denylist == ["respuestas", "adjuntos"]
        assert config.strict_verification is True

    def test_reads_dotenv_file(self, clean_env):
        clean_env.write_text("WISPHUB_API_KEY=from-file\nWISPHUB_DEFAULT_TECHNICIAN=tech@isp.com\n")

        try:
            config = load_config(str(clean_env))
        finally:
            os.environ.pop("WISPHUB_API_KEY", None)
            os.environ.pop("WISPHUB_DEFAULT_TECHNICIAN", None)

        assert config.api_key == "from-file"
        assert config.tickets.technician == "tech@isp.com"

    def test_bad_integer(self, clean_env, monkeypatch):
        monkeypatch.setenv("WISPHUB_API_KEY", "abc")
        monkeypatch.setenv("WISPHUB_TIMEOUT", "soon")

        with pytest.raises(ValidationError):
            load_config(str(clean_env))

    def test_validate_lookup_attempts(self):
        with pytest.raises(ValidationError):
            ServerConfig(api_key="abc", client_lookup_attempts=0).validate()


class TestLogging:
    def test_sanitize_args(self):
        cleaned = sanitize_args({"api_key": "s3cret", "token": "t", "service_id": 5})

        assert cleaned == {"api_key": "[REDACTED]", "token": "[REDACTED]", "service_id": 5}

    def test_formatter_appends_extra(self):
        formatter = KeyValueFormatter("%(levelname)s %(message)s")
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "Operation done", (), None)
        record.request_id = "abc123"
        record.duration_ms = 12

        line = formatter.format(record)

        assert line.startswith("INFO Operation done | ")
        assert "duration_ms=12" in line
        assert "request_id='abc123'" in line

    def test_formatter_without_extra(self):
        formatter = KeyValueFormatter("%(message)s")
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "plain", (), None)

        assert formatter.format(record) == "plain"
