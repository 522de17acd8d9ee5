""" Runtime configuration loaded from the environment (and an optional .env file). """
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ Settings read from environment variables; names are case-insensitive. """

    # MCP Router
    mcp_router_server_url: str = ""
    mcp_router_server_api_key: str = ""
    tool_timeout: float = 30.0

    # LLM
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    workflow_model: str = "openai/gpt-4o-mini"
    llm_timeout: float = 120.0
    agent_max_attempts: int = 3

    # Converter sandbox
    node_binary: str = "node"
    python_binary: Optional[str] = None
    converter_timeout: float = 5.0
    converter_memory_mb: int = 128
    converter_max_concurrency: int = 4

    # Built-in tools
    binance_base_url: str = "https://api.binance.com"

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "json" for production, "text" for development

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", case_sensitive=False, extra="ignore")

    @property
    def has_llm_key(self) -> bool:
        return bool(self.openrouter_api_key)


@lru_cache
def get_settings() -> Settings:
    """ Get cached settings. """
    return Settings()
