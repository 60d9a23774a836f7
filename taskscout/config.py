"""Taskscout configuration — loaded from .env via pydantic-settings."""

from pydantic_settings import BaseSettings
from pydantic import Field


class TaskscoutSettings(BaseSettings):
    """All Taskscout configuration. Reads from .env file and environment variables.

    A provider whose credentials are empty is treated as disabled and the
    pipeline takes its rule-based fallback path instead.
    """

    # --- LLM (any OpenAI-compatible chat completions endpoint) ---
    llm_api_key: str = Field(default="", description="API key for the LLM endpoint; empty disables the LLM")
    llm_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of an OpenAI-compatible API",
    )
    llm_model: str = Field(default="gpt-4o-mini", description="Chat model used for planning and synthesis")
    llm_timeout: float = Field(default=60.0, description="Per-request LLM timeout in seconds")

    # --- Web search ---
    search_provider: str = Field(
        default="auto",
        description="Search backend: auto|perplexity|tavily|mock",
    )
    perplexity_api_key: str = Field(default="", description="Perplexity API key")
    perplexity_base_url: str = Field(default="https://api.perplexity.ai")
    tavily_api_key: str = Field(default="", description="Tavily API key")
    tavily_base_url: str = Field(default="https://api.tavily.com")
    search_timeout: float = Field(default=30.0, description="Per-query search timeout in seconds")

    # --- Google Calendar ---
    google_client_id: str = Field(default="", description="OAuth client id")
    google_client_secret: str = Field(default="", description="OAuth client secret")
    google_redirect_uri: str = Field(
        default="http://localhost:8000/api/calendar/auth/google/callback",
        description="OAuth redirect URI registered with Google",
    )
    google_webhook_url: str = Field(
        default="",
        description="Public HTTPS address Google pushes calendar notifications to",
    )

    # --- Token encryption ---
    token_encryption_key: str = Field(
        default="",
        description="Fernet key used to encrypt OAuth tokens at rest",
    )

    # --- Storage ---
    storage_backend: str = Field(default="memory", description="Storage backend: memory|postgres")
    postgres_url: str = Field(
        default="postgresql://localhost:5432/taskscout",
        description="PostgreSQL connection string",
    )

    # --- Redis ---
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the research progress log",
    )

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(
        default="console",
        description="Log format: 'console' for dev, 'json' for production",
    )

    # --- Research pipeline ---
    planner_max_subtasks: int = Field(default=6, description="Upper bound on planned queries")
    results_per_subtask: int = Field(default=5, description="Search results requested per query")
    max_results_for_synthesis: int = Field(default=15, description="Results shown to the synthesizer")
    research_history_keep: int = Field(
        default=5,
        description="Plans/results kept per task by daily maintenance; 0 keeps everything",
    )
    work_queue_size: int = Field(default=100, description="Max pending background jobs")
    work_queue_workers: int = Field(default=2, description="Concurrent background job consumers")

    # --- Calendar scheduler ---
    calendar_test_mode: bool = Field(
        default=False,
        description="Shorter sync interval and wider meeting-prep window for manual testing",
    )
    sync_window_days: int = Field(default=30, description="Forward window for full syncs")
    webhook_renewal_minutes: int = Field(default=20, description="Renewal job interval")
    webhook_renew_within_minutes: int = Field(
        default=60,
        description="Renew subscriptions expiring within this many minutes",
    )
    sync_interval_minutes: int = Field(default=15, description="Periodic pull sync interval")
    meeting_prep_interval_minutes: int = Field(default=15, description="Meeting-prep sweep interval")
    maintenance_hour: int = Field(default=3, description="Hour (UTC) of the daily maintenance job")

    # --- HTTP ---
    frontend_url: str = Field(default="http://localhost:3000", description="Redirect target after OAuth")
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8000)

    # --- User ---
    default_owner: str = Field(default="default", description="Default owner id for CLI commands")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_api_key)

    @property
    def effective_sync_interval_minutes(self) -> int:
        return 5 if self.calendar_test_mode else self.sync_interval_minutes

    @property
    def meeting_window_hours(self) -> tuple[int, int]:
        """(min, max) hours ahead in which a meeting gets a prep task."""
        return (24, 168) if self.calendar_test_mode else (12, 48)


# Singleton: import this everywhere
settings = TaskscoutSettings()
