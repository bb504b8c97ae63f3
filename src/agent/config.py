"""Runtime configuration.

Each component takes its own pydantic config model. ``Settings`` aggregates
them and reads overrides from the environment (prefix ``TASKLOOP_``, nested
fields separated by ``__``) and an optional ``.env`` file:

    TASKLOOP_AGENT__MAX_ITERATIONS=5
    TASKLOOP_EXECUTOR__RETRY_DELAY=0.5
    TASKLOOP_LLM__BASE_URL=http://localhost:1234/v1
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ExecutorConfig(BaseModel):
    """Retry and timeout policy. Durations are in seconds."""

    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0)
    timeout: float = Field(default=60.0, gt=0)


class AgentConfig(BaseModel):
    max_iterations: int = Field(default=10, ge=1)
    max_corrections: int = Field(default=3, ge=0)
    enable_learning: bool = True


class PlannerConfig(BaseModel):
    max_steps: int = Field(default=10, ge=1)
    enable_cache: bool = True
    # Quick regex matches above this confidence skip the LLM
    quick_match_threshold: float = Field(default=0.9, ge=0, le=1)
    step_timeout: float = Field(default=30.0, gt=0)


class MemoryConfig(BaseModel):
    max_messages: int = Field(default=100, ge=1)
    max_thoughts: int = Field(default=50, ge=1)
    max_patterns: int = Field(default=100, ge=1)
    persist_path: str = ".taskloop"


class LLMConfig(BaseModel):
    model: str = "gpt-4o"
    base_url: str | None = None
    api_key: str | None = None
    use_circuit_breaker: bool = True


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TASKLOOP_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    agent: AgentConfig = Field(default_factory=AgentConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}")
        return level


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, applying explicit overrides last."""
    return Settings(**overrides)
