"""Environment-driven configuration and logging setup."""

import logging
import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError

from ..errors import PolicyMisconfigurationError
from ..memory.types import CompactionPolicyConfig, SummarizationConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, cast: type, default=None):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise PolicyMisconfigurationError(
            f"{name} must be a {cast.__name__}, got {value!r}", name
        ) from e


class ContextSettings(BaseModel):
    """Settings for the context manager, checkpointing and logging.

    ``None`` policy values mean "use the library default".
    """

    max_tokens: int = Field(default=128_000, gt=0)
    token_threshold: float | None = None
    hard_cap_threshold: float | None = None
    enable_growth_rate_prediction: bool | None = None
    enable_error_fallback: bool | None = None
    keep_message_count: int | None = None
    keep_tool_result_count: int | None = None
    checkpoint_dir: str | None = None
    checkpoint_after_step: bool = False
    otel_enabled: bool = False
    log_file: str | None = None

    def policy_config(self) -> CompactionPolicyConfig:
        return CompactionPolicyConfig(
            token_threshold=self.token_threshold,
            hard_cap_threshold=self.hard_cap_threshold,
            enable_growth_rate_prediction=self.enable_growth_rate_prediction,
            enable_error_fallback=self.enable_error_fallback,
        )

    def summarization_config(self) -> SummarizationConfig:
        overrides = {
            "keep_message_count": self.keep_message_count,
            "keep_tool_result_count": self.keep_tool_result_count,
        }
        return SummarizationConfig(**{k: v for k, v in overrides.items() if v is not None})


def load_settings(dotenv: bool = True, dotenv_path: str | None = None) -> ContextSettings:
    """Build settings from ``CTXKEEP_*`` environment variables.

    With ``dotenv`` set, a ``.env`` file (``dotenv_path``, or the nearest one above
    the working directory) is loaded first. Variables already set in the
    environment win over the file.
    """
    if dotenv:
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))

    growth = os.getenv("CTXKEEP_GROWTH_RATE_PREDICTION")
    fallback = os.getenv("CTXKEEP_ERROR_FALLBACK")

    try:
        return _build_settings(growth, fallback)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise PolicyMisconfigurationError(first.get("msg", str(e)), field) from e


def _build_settings(growth: str | None, fallback: str | None) -> ContextSettings:
    return ContextSettings(
        max_tokens=_env_number("CTXKEEP_MAX_TOKENS", int, 128_000),
        token_threshold=_env_number("CTXKEEP_TOKEN_THRESHOLD", float),
        hard_cap_threshold=_env_number("CTXKEEP_HARD_CAP_THRESHOLD", float),
        enable_growth_rate_prediction=(
            _env_bool("CTXKEEP_GROWTH_RATE_PREDICTION", False) if growth else None
        ),
        enable_error_fallback=_env_bool("CTXKEEP_ERROR_FALLBACK", True) if fallback else None,
        keep_message_count=_env_number("CTXKEEP_KEEP_MESSAGES", int),
        keep_tool_result_count=_env_number("CTXKEEP_KEEP_TOOL_RESULTS", int),
        checkpoint_dir=os.getenv("CTXKEEP_CHECKPOINT_DIR") or None,
        checkpoint_after_step=_env_bool("CTXKEEP_CHECKPOINT_AFTER_STEP", False),
        otel_enabled=_env_bool("CTXKEEP_OTEL_ENABLED", False),
        log_file=os.getenv("CTXKEEP_LOG_FILE") or None,
    )


def configure_file_logging(log_file: str, level: int = logging.INFO) -> None:
    """Redirect all logs to a file instead of stdout/stderr."""
    handler = logging.FileHandler(log_file, mode="a")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))
    # Configure root logger so ctxkeep.*, httpx and friends all use the file
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
