"""Service settings for the IPO readiness engine.

All values can be overridden from the environment using the
IPO_READINESS_ prefix (e.g. IPO_READINESS_AUTOSAVE_DEBOUNCE_SECONDS=2).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the assessment lifecycle engine.

    Environment variable prefix: IPO_READINESS_
    """

    service_name: str = "ipo-readiness-engine"

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./ipo_readiness.db"
    database_echo: bool = False

    # Auto-save (client-side persistence of in-progress answers)
    autosave_debounce_seconds: float = 1.5
    autosave_retry_base_delay_seconds: float = 1.0
    autosave_max_retries: int = 2  # 3 attempts in total

    # Validation rules
    min_question_text_length: int = 10
    min_reject_comment_length: int = 10

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(env_prefix="IPO_READINESS_")
