from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Site Archiver"
    base_storage_dir: str = "./archives"
    index_filename: str = "metadata.json"
    log_level: str = "INFO"

    # Traversal bounds
    max_depth: int = 3
    max_pages: int = 50
    pacing_delay: float = 1.0

    # Timeouts (seconds) and browser settle time
    page_timeout: float = 30.0
    asset_timeout: float = 15.0
    render_settle_ms: int = 2000
    use_browser: bool = True

    # Retry policy: min(base * 2^(attempt-1), max)
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 5.0

    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36"
    )

    # Worker pool
    job_workers: int = 2
    job_queue_size: int = 16


settings = Settings()
