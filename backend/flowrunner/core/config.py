# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
flowrunner configuration - single source of truth.
YAML is king. Env vars ONLY for secrets and the config path override.
"""

import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from flowrunner.core.errors import ConfigurationError

DEFAULT_CONFIG_PATH = "configs/engine.yaml"


class EngineSettings(BaseModel):
    """Validated numeric limits of the execution controller."""
    wait_max_ms: int = Field(default=10000, ge=0, le=60000)
    schedule_max_wait_ms: int = Field(default=300000, ge=0, le=3600000)
    default_memory_turns: int = Field(default=10, ge=0, le=100)
    http_timeout_ms: int = Field(default=30000, gt=0, le=600000)
    http_max_retries: int = Field(default=2, ge=0, le=10)
    http_retry_backoff_ms: int = Field(default=500, ge=0, le=10000)
    loop_max_iterations: int = Field(default=100, gt=0, le=100000)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(default="json")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        v = v.upper()
        if v not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("Invalid log level")
        return v

    @field_validator("format")
    @classmethod
    def validate_format(cls, v):
        if v not in ["json", "text"]:
            raise ValueError("Format must be 'json' or 'text'")
        return v


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable engine configuration.
    All values from YAML. No hidden state.
    """

    # -- Server --
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: tuple = ("*",)

    # -- Paths --
    workflows_path: str = "workflows"
    executions_path: str = "executions"

    # -- Engine limits --
    wait_max_ms: int = 10000
    schedule_max_wait_ms: int = 300000
    default_memory_turns: int = 10
    loop_max_iterations: int = 100

    # -- HTTP --
    http_timeout_ms: int = 30000
    http_max_retries: int = 2
    http_retry_backoff_ms: int = 500

    # -- External services --
    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    ai_default_model: str = "google/gemini-2.5-flash"
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    resend_api_url: str = "https://api.resend.com/emails"
    default_timezone: str = "Asia/Kolkata"

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def http_timeout_seconds(self) -> float:
        return self.http_timeout_ms / 1000.0


# =============================================================================
# SECRETS - The ONLY thing from environment variables
# =============================================================================

def get_resend_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("RESEND_API_KEY")


def get_ai_gateway_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("AI_GATEWAY_API_KEY")


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.

    Raises:
        ConfigurationError: If the file is not valid YAML or a limit is out of range
    """
    if not Path(path).exists():
        return Config()

    try:
        with open(path) as f:
            y = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config: {e}", config_file=path)

    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    try:
        engine = EngineSettings(**(get(y, "engine") or {}))
        logging_settings = LoggingSettings(**(get(y, "logging") or {}))
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid engine configuration: {e}", config_file=path)

    return Config(
        # Server
        host=get(y, "server", "host") or "0.0.0.0",
        port=get(y, "server", "port") or 8000,
        cors_origins=tuple(get(y, "server", "cors_origins") or ["*"]),

        # Paths
        workflows_path=get(y, "paths", "workflows") or "workflows",
        executions_path=get(y, "paths", "executions") or "executions",

        # Engine
        wait_max_ms=engine.wait_max_ms,
        schedule_max_wait_ms=engine.schedule_max_wait_ms,
        default_memory_turns=engine.default_memory_turns,
        loop_max_iterations=engine.loop_max_iterations,
        http_timeout_ms=engine.http_timeout_ms,
        http_max_retries=engine.http_max_retries,
        http_retry_backoff_ms=engine.http_retry_backoff_ms,

        # External services
        ai_gateway_url=get(y, "services", "ai_gateway_url") or Config.ai_gateway_url,
        ai_default_model=get(y, "services", "ai_default_model") or Config.ai_default_model,
        gemini_api_url=get(y, "services", "gemini_api_url") or Config.gemini_api_url,
        resend_api_url=get(y, "services", "resend_api_url") or Config.resend_api_url,
        default_timezone=get(y, "services", "default_timezone") or Config.default_timezone,

        # Logging
        log_level=os.getenv("LOG_LEVEL", logging_settings.level),
        log_format=logging_settings.format,
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("FLOWRUNNER_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
