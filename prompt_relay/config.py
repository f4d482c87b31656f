import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator


class Settings(BaseModel):
    """Process-wide settings, read once at startup and never mutated."""

    model_config = ConfigDict(frozen=True)

    allowed_origin: str = "http://localhost:3000"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "neural-chat"
    ollama_timeout: float = 120.0
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    @field_validator("ollama_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.upper()


_ENV_VARS = {
    "allowed_origin": "RELAY_ALLOWED_ORIGIN",
    "ollama_base_url": "OLLAMA_BASE_URL",
    "ollama_model": "OLLAMA_MODEL",
    "ollama_timeout": "OLLAMA_TIMEOUT",
    "host": "RELAY_HOST",
    "port": "RELAY_PORT",
    "log_level": "LOG_LEVEL",
}


def load_settings() -> Settings:
    load_dotenv()
    values = {}
    for field, env_var in _ENV_VARS.items():
        raw = os.getenv(env_var)
        if raw:
            values[field] = raw
    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


__all__ = ["Settings", "load_settings", "get_settings"]
