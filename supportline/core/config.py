"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str
    openai_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 300
    llm_temperature: float = 0.7

    # Tavily search
    tavily_api_key: str
    tavily_api_url: str = "https://api.tavily.com/search"
    search_max_results: int = 5

    # Twilio
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str
    validate_twilio_signature: bool = True

    # Database
    database_url: str

    # Logging
    log_level: str = "INFO"

    # Support line
    support_line_name: str = "the support line"
    hotline_number: str = "1-800-799-7233"

    # Backend gateway
    gateway_max_attempts: int = 3
    gateway_retry_delay_seconds: float = 0.5
    gateway_backoff_factor: float = 2.0
    gateway_max_delay_seconds: float = 5.0
    gateway_timeout_seconds: float = 10.0
    gateway_max_calls_per_second: Optional[float] = None
    gateway_max_concurrency: int = 8

    # Response cache
    cache_ttl_seconds: float = 3600.0
    cache_max_entries: int = 500
    cache_sweep_interval_seconds: float = 300.0

    # Conversation context
    context_ttl_seconds: float = 300.0
    context_history_limit: int = 5

    # Routing patterns (defaults to the bundled YAML table)
    routing_patterns_file: Optional[str] = None

    # Call session timers
    activity_check_interval_seconds: float = 15.0
    inactivity_timeout_seconds: float = 30.0
    inactivity_reprompts: int = 1
    response_timeout_seconds: float = 30.0
    max_response_retries: int = 3
    consent_wait_seconds: float = 20.0

    # Follow-up SMS
    sms_max_attempts: int = 4
    sms_retry_delay_seconds: float = 5.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    base_url: Optional[str] = None
    stats_api_key: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
