"""Tests for the structured logging setup."""

import json

import pytest

from shared import MonitoringConfig, OracleLogger, configure_logging, get_config, validation_context


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    get_config.cache_clear()
    configure_logging()


def json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class TestLogging:
    """Test suite for configure_logging and validation_context."""

    def test_level_and_json_output(self, capsys):
        """Events below the configured level are dropped; the rest are JSON."""
        configure_logging(MonitoringConfig(log_level="WARNING", json_logs=True))
        logger = OracleLogger("ORACLE-TEST")

        logger.info("Below threshold")
        logger.warning("Source slow", source="a")

        events = json_lines(capsys.readouterr().out)
        assert len(events) == 1
        assert events[0]["event"] == "Source slow"
        assert events[0]["level"] == "warning"
        assert events[0]["component"] == "ORACLE-TEST"
        assert events[0]["source"] == "a"

    def test_validation_context_is_attached(self, capsys):
        """Events inside a validation pass carry its symbols and cache key."""
        configure_logging(MonitoringConfig(json_logs=True))
        logger = OracleLogger("ORACLE-TEST")

        with validation_context(["BTC", "ETH"], "oracle-validation:BTC,ETH"):
            logger.info("Inside")
        logger.info("Outside")

        inside, outside = json_lines(capsys.readouterr().out)
        assert inside["symbols"] == ["BTC", "ETH"]
        assert inside["cache_key"] == "oracle-validation:BTC,ETH"
        assert "symbols" not in outside

    def test_get_config_applies_monitoring(self, monkeypatch, capsys):
        """Loading the configuration installs its logging settings."""
        monkeypatch.setenv("ORACLE_MONITORING__LOG_LEVEL", "error")
        monkeypatch.setenv("ORACLE_MONITORING__JSON_LOGS", "true")
        get_config.cache_clear()

        config = get_config()
        logger = OracleLogger("ORACLE-TEST")
        logger.warning("Suppressed")
        logger.error("Reported")

        assert config.monitoring.log_level == "ERROR"
        events = json_lines(capsys.readouterr().out)
        assert [e["event"] for e in events] == ["Reported"]
