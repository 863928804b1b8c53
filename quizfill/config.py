"""Configuration loaded from environment (.env) and defaults."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # quizfill/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM provider: openai | anthropic
    qf_llm_provider: str = "openai"

    # OpenAI
    openai_api_key: str | None = None
    qf_openai_model: str = "gpt-4o-mini"

    # Anthropic
    anthropic_api_key: str | None = None
    qf_anthropic_model: str = "claude-3-5-sonnet-20241022"

    # File stores live here when no database URL is configured
    qf_data_dir: str = "./data"

    # Postgres URL for job and content stores (file stores when unset)
    qf_database_url: str | None = None

    # A RUNNING job whose lease expired is picked up by the sweeper.
    # Keep it above the per-invocation generation budget.
    qf_job_lease_seconds: int = 300
    qf_generation_timeout_seconds: int = 120

    # Max persisted questions sampled into the dedup snapshot per step
    qf_question_sample_limit: int = 120

    # Background worker pool used by the HTTP API
    qf_worker_threads: int = 4

    qf_log_level: str = "INFO"

    # CORS origins (comma-separated). Defaults to localhost dev.
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Server port
    port: int = 8000

    @property
    def data_dir(self) -> Path:
        """Data directory as an absolute Path.

        Relative paths are resolved against the project root (not CWD).
        """
        p = Path(self.qf_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
