from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    log_level: str = "INFO"

    # Reasoning backend settings
    default_provider: str = "openai"     # "openai", "anthropic", "gemini", "siliconflow", "ollama"

    # OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    # Anthropic
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"

    # Gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # SiliconFlow (OpenAI-compatible)
    siliconflow_api_key: str = ""
    siliconflow_model: str = "Qwen/Qwen2.5-7B-Instruct"

    # Ollama (local)
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"

    # Interpretation
    backend_timeout_seconds: float = 30.0
    backend_max_tokens: int = 500
    backend_temperature: float = 0.3
    conversation_turns: int = 10

    # Suggestions
    suggestion_limit: int = 5
    suggestion_cache_ttl_seconds: float = 60.0
    suggestion_budget_ms: float = 500.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
