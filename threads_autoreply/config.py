"""Configuration management for the Threads auto-reply service."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, SecretStr


class ThreadsConfig(BaseModel):
    """Threads app credentials and Graph API settings."""

    app_id: str = Field(..., description="Threads app ID")
    app_secret: SecretStr = Field(..., description="App secret used to sign webhook deliveries")
    webhook_verify_token: SecretStr = Field(
        ..., description="Token echoed back during the webhook subscription handshake"
    )
    api_base_url: str = "https://graph.threads.net"
    timeout_seconds: float = Field(default=30.0, gt=0)


class LLMConfig(BaseModel):
    """LLM provider settings."""

    provider: Literal["anthropic", "openai"] = "openai"
    api_key: SecretStr = Field(..., description="API key for LLM provider")
    model: str = "gpt-4o"
    max_tokens: int = Field(default=500, ge=1, le=4096)
    reply_max_tokens: int = Field(default=150, ge=1, le=4096)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    max_reply_length: int = Field(default=500, ge=1, le=500)


class SecurityConfig(BaseModel):
    """Key material for stored platform credentials."""

    encryption_key: SecretStr = Field(..., description="Fernet key for access tokens at rest")


class PipelineConfig(BaseModel):
    """Mention pipeline behavior settings."""

    database_path: str = Field(
        default="~/.threads-autoreply/autoreply.db", description="Path to SQLite database file"
    )
    max_concurrent_tasks: int = Field(default=10, ge=1, description="Concurrent continuations")
    pull_lookback_hours: int = Field(default=24, ge=1)
    pull_post_limit: int = Field(default=25, ge=1, le=100)
    token_refresh_margin_seconds: int = Field(default=0, ge=0)


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)


class Config(BaseModel):
    """Root configuration model."""

    threads: ThreadsConfig
    llm: LLMConfig
    security: SecurityConfig
    pipeline: PipelineConfig = PipelineConfig()
    server: ServerConfig = ServerConfig()


def expand_env_vars(obj):
    """Recursively replace ``${VAR_NAME}`` strings with environment values."""
    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [expand_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        env_var = obj[2:-1]
        value = os.getenv(env_var)
        if value is None:
            raise ValueError(f"Environment variable '{env_var}' is not set")
        return value
    return obj


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load and validate configuration from YAML file.

    Supports ${VAR_NAME} syntax for environment variable expansion.

    Args:
        config_path: Path to the configuration file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If config is invalid.
        ValueError: If referenced environment variable is not set.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Copy config.example.yaml to config.yaml and fill in your values."
        )

    with path.open() as f:
        raw_config = yaml.safe_load(f) or {}

    return Config(**expand_env_vars(raw_config))
