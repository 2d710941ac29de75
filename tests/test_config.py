"""
Configuration loading and logging setup.
"""
import json
import logging
from pathlib import Path

import pytest

from onboarding_graph.config import ConfigError, OnboardingConfig, load_config
from onboarding_graph.infrastructure.storage import JSONFileStorage
from onboarding_graph.logging_setup import ContextFilter, JSONFormatter, SessionContext, setup_logging
from onboarding_graph.orchestration.service import OnboardingService

SHIPPED_CONFIG = Path(__file__).resolve().parent.parent / "config" / "onboarding.yaml"


class TestLoadConfig:
    def test_defaults(self):
        config = load_config(env={})
        assert config == OnboardingConfig()

    def test_yaml_overrides_defaults(self, tmp_path):
        path = tmp_path / "onboarding.yaml"
        path.write_text("onboarding:\n  max_retries: 5\n  session_timeout_seconds: 60\n  log_level: DEBUG\n")
        config = load_config(str(path), env={})
        assert config.max_retries == 5
        assert config.session_timeout_seconds == 60.0
        assert config.log_level == "DEBUG"
        assert config.discriminator_field == "business_type"

    def test_env_wins_over_yaml(self, tmp_path):
        path = tmp_path / "onboarding.yaml"
        path.write_text("max_retries: 5\n")
        config = load_config(str(path), env={"ONBOARDING_MAX_RETRIES": "7"})
        assert config.max_retries == 7

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("ONBOARDING_DEFAULT_DISCRIMINATOR", "llp")
        assert load_config().default_discriminator == "llp"

    def test_missing_file_falls_back(self, tmp_path, caplog):
        config = load_config(str(tmp_path / "absent.yaml"), env={})
        assert config.max_retries == 3
        assert "Using defaults" in caplog.text

    def test_unknown_key_ignored(self, tmp_path, caplog):
        path = tmp_path / "onboarding.yaml"
        path.write_text("onboarding:\n  colour: blue\n")
        load_config(str(path), env={})
        assert "unknown config key: colour" in caplog.text

    @pytest.mark.parametrize("env", [
        {"ONBOARDING_MAX_RETRIES": "many"},
        {"ONBOARDING_MAX_RETRIES": "-1"},
        {"ONBOARDING_SESSION_TIMEOUT": "soon"},
    ])
    def test_bad_values(self, env):
        with pytest.raises(ConfigError):
            load_config(env=env)

    def test_shipped_config_loads(self):
        config = load_config(str(SHIPPED_CONFIG), env={})
        assert config.default_discriminator == "individual"


class TestLogging:
    @pytest.fixture(autouse=True)
    def restore_handlers(self):
        logger = logging.getLogger("Onboarding")
        handlers, level = list(logger.handlers), logger.level
        yield
        for handler in logger.handlers:
            handler.close()
        logger.handlers[:] = handlers
        logger.setLevel(level)

    def test_json_formatter_includes_context(self):
        SessionContext.set("sess-1", "merchant_onboarding")
        try:
            record = logging.LogRecord("Onboarding.Test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
            ContextFilter().filter(record)
        finally:
            SessionContext.clear()
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "hello world"
        assert entry["session_id"] == "sess-1"
        assert entry["graph_id"] == "merchant_onboarding"
        assert "node_id" not in entry

    def test_setup_writes_json_lines(self, tmp_path):
        log_file = setup_logging("WARNING", log_dir=str(tmp_path))
        logging.getLogger("Onboarding.Test").debug("to file only")
        for handler in logging.getLogger("Onboarding").handlers:
            handler.flush()
        lines = [json.loads(line) for line in open(log_file)]
        assert any(line["message"] == "to file only" for line in lines)

    def test_setup_without_dir(self):
        assert setup_logging("INFO") is None
        assert len(logging.getLogger("Onboarding").handlers) == 1

    def test_service_from_config_applies_settings(self, tmp_path, monkeypatch):
        for var in ("ONBOARDING_LOG_LEVEL", "ONBOARDING_STORAGE_PATH"):
            monkeypatch.delenv(var, raising=False)
        path = tmp_path / "onboarding.yaml"
        path.write_text(f"onboarding:\n  storage_path: \"{tmp_path / 'store'}\"\n  log_level: WARNING\n")
        service = OnboardingService.from_config(str(path))
        assert isinstance(service.storage, JSONFileStorage)
        assert service.config.log_level == "WARNING"
        assert logging.getLogger("Onboarding").handlers[0].level == logging.WARNING
