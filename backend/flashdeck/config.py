from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".flashdeck" / "data"
    sqlite_filename: str = "flashdeck.db"
    sqlite_busy_timeout: float = 5.0  # seconds a writer waits on the db lock

    api_key: str | None = None  # None = no key check

    # Scheduler
    desired_retention: float = 0.9
    maximum_interval: int = 36500
    learning_steps_minutes: list[float] = [1.0, 10.0]
    relearning_steps_minutes: list[float] = [10.0]
    fsrs_weights: list[float] | None = None  # 21 FSRS-6 weights

    review_max_attempts: int = 3
    review_retry_backoff: float = 0.05

    host: str = "127.0.0.1"
    port: int | None = None  # None = pick a free port
    log_level: str = "INFO"

    model_config = {"env_prefix": "FLASHDECK_"}


settings = Settings()
