"""Configuration management for Gravity Claw."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.gravity-claw/config.yaml").expanduser()
DEFAULT_FACTS_PATH = Path("~/.gravity-claw/facts.json").expanduser()
DEFAULT_VECTOR_PATH = Path("~/.gravity-claw/vectors.db").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "openrouter"
    model: str = "google/gemini-2.5-flash:free"
    fallback_model: str = ""
    temperature: float = 0.7
    max_tokens: int = 4096
    api_key: str = ""
    base_url: str = ""
    request_timeout_seconds: float = 120.0


class AgentConfig(BaseModel):
    """Agent loop limits."""

    max_iterations: int = 10
    max_tool_calls: int = 15
    max_calls_per_tool: int = 5
    tool_timeout_seconds: float = 30.0
    leaked_tool_calls: Literal["strip", "execute"] = "strip"
    error_message_max_chars: int = 150


class RetryConfig(BaseModel):
    """Provider retry policy."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    retryable_statuses: list[int] = [429, 500, 502, 503, 504]


class EmbeddingsConfig(BaseModel):
    """Embedding provider configuration."""

    provider: Literal["local_hash", "openai"] = "local_hash"
    model: str = "text-embedding-3-small"
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    dimensions: int = 256
    request_timeout_seconds: float = 10.0


class MemoryConfig(BaseModel):
    """Layered memory configuration."""

    enabled: bool = True
    buffer_cap: int = 50
    context_messages: int = 10
    semantic_matches: int = 5
    semantic_overfetch: int = 5
    relevance_threshold: float = 0.75
    extraction_every: int = 4
    extraction_window: int = 8
    snippet_chars: int = 200
    facts_path: str = str(DEFAULT_FACTS_PATH)
    vector_store: Literal["memory", "sqlite"] = "memory"
    vector_path: str = str(DEFAULT_VECTOR_PATH)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Gravity Claw."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="GRAVITY_CLAW_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from the default YAML path; environment fills unset values."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
