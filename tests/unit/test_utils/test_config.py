"""Unit tests for ctxkeep.utils.config module."""

import logging

import pytest

from ctxkeep.errors import PolicyMisconfigurationError
from ctxkeep.memory.policy import resolve_policy
from ctxkeep.utils.config import configure_file_logging, load_settings

ENV_VARS = [
    "CTXKEEP_MAX_TOKENS",
    "CTXKEEP_TOKEN_THRESHOLD",
    "CTXKEEP_HARD_CAP_THRESHOLD",
    "CTXKEEP_GROWTH_RATE_PREDICTION",
    "CTXKEEP_ERROR_FALLBACK",
    "CTXKEEP_KEEP_MESSAGES",
    "CTXKEEP_KEEP_TOOL_RESULTS",
    "CTXKEEP_CHECKPOINT_DIR",
    "CTXKEEP_CHECKPOINT_AFTER_STEP",
    "CTXKEEP_OTEL_ENABLED",
    "CTXKEEP_LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores the original state, even after load_dotenv
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self):
        settings = load_settings(dotenv=False)
        assert settings.max_tokens == 128_000
        assert settings.checkpoint_dir is None
        assert settings.checkpoint_after_step is False

        policy = resolve_policy(settings.policy_config())
        assert policy.token_threshold == 0.8
        assert policy.enable_error_fallback is True
        assert settings.summarization_config().keep_message_count == 10

    def test_values_from_environment(self, monkeypatch):
        monkeypatch.setenv("CTXKEEP_MAX_TOKENS", "50000")
        monkeypatch.setenv("CTXKEEP_TOKEN_THRESHOLD", "0.7")
        monkeypatch.setenv("CTXKEEP_GROWTH_RATE_PREDICTION", "true")
        monkeypatch.setenv("CTXKEEP_ERROR_FALLBACK", "false")
        monkeypatch.setenv("CTXKEEP_KEEP_MESSAGES", "6")
        monkeypatch.setenv("CTXKEEP_CHECKPOINT_DIR", "/var/lib/ctxkeep")
        monkeypatch.setenv("CTXKEEP_CHECKPOINT_AFTER_STEP", "1")

        settings = load_settings(dotenv=False)

        assert settings.max_tokens == 50_000
        assert settings.checkpoint_dir == "/var/lib/ctxkeep"
        assert settings.checkpoint_after_step is True

        policy = resolve_policy(settings.policy_config())
        assert policy.token_threshold == 0.7
        assert policy.hard_cap_threshold == 0.95
        assert policy.enable_growth_rate_prediction is True
        assert policy.enable_error_fallback is False

        summarization = settings.summarization_config()
        assert summarization.keep_message_count == 6
        assert summarization.keep_tool_result_count == 5

    def test_unparseable_number(self, monkeypatch):
        monkeypatch.setenv("CTXKEEP_MAX_TOKENS", "lots")
        with pytest.raises(PolicyMisconfigurationError) as exc_info:
            load_settings(dotenv=False)
        assert exc_info.value.field == "CTXKEEP_MAX_TOKENS"

    def test_non_positive_budget(self, monkeypatch):
        monkeypatch.setenv("CTXKEEP_MAX_TOKENS", "0")
        with pytest.raises(PolicyMisconfigurationError) as exc_info:
            load_settings(dotenv=False)
        assert exc_info.value.field == "max_tokens"

    def test_out_of_range_threshold_fails_on_resolve(self, monkeypatch):
        monkeypatch.setenv("CTXKEEP_TOKEN_THRESHOLD", "1.5")
        settings = load_settings(dotenv=False)
        with pytest.raises(PolicyMisconfigurationError):
            resolve_policy(settings.policy_config())

    def test_dotenv_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("CTXKEEP_MAX_TOKENS=32000\nCTXKEEP_KEEP_MESSAGES=3\n")

        settings = load_settings(dotenv_path=str(env_file))

        assert settings.max_tokens == 32_000
        assert settings.summarization_config().keep_message_count == 3

    def test_environment_wins_over_dotenv(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("CTXKEEP_MAX_TOKENS=32000\n")
        monkeypatch.setenv("CTXKEEP_MAX_TOKENS", "64000")

        assert load_settings(dotenv_path=str(env_file)).max_tokens == 64_000


class TestConfigureFileLogging:
    """Tests for configure_file_logging."""

    def test_logs_go_to_file(self, tmp_path):
        log_file = tmp_path / "ctxkeep.log"
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_file_logging(str(log_file))
            logging.getLogger("ctxkeep.test").info("compacted thread t-1")
            for handler in root.handlers:
                handler.flush()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        assert "compacted thread t-1" in log_file.read_text()
