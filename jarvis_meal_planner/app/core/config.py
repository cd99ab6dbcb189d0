import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./jarvis_meal_planner.db", alias="DATABASE_URL")
    llm_base_url: str | None = Field(None, alias="LLM_BASE_URL")
    llm_full_model_name: str = Field("full", alias="JARVIS_FULL_MODEL_NAME")
    llm_embedding_model_name: str = Field("embedding", alias="JARVIS_EMBEDDING_MODEL_NAME")
    llm_app_id: str | None = Field(None, alias="LLM_APP_ID")
    llm_app_key: str | None = Field(None, alias="LLM_APP_KEY")
    # No retries on upstream calls; these are the only deadlines applied.
    llm_timeout_seconds: int = Field(60, alias="LLM_TIMEOUT_SECONDS")
    embedding_timeout_seconds: int = Field(15, alias="EMBEDDING_TIMEOUT_SECONDS")
    embedding_dimensions: int = Field(1024, alias="EMBEDDING_DIMENSIONS")
    retrieval_top_k: int = Field(8, alias="RETRIEVAL_TOP_K")
    retrieval_frequency_weight: float = Field(0.7, alias="RETRIEVAL_FREQUENCY_WEIGHT")
    retrieval_similarity_weight: float = Field(0.3, alias="RETRIEVAL_SIMILARITY_WEIGHT")
    history_top_meals_limit: int = Field(10, alias="HISTORY_TOP_MEALS_LIMIT")
    reroll_history_limit: int = Field(4, alias="REROLL_HISTORY_LIMIT")
    lookback_min_days: int = Field(7, alias="LOOKBACK_MIN_DAYS")
    lookback_max_days: int = Field(365, alias="LOOKBACK_MAX_DAYS")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()
    except PermissionError:
        logger.warning("Unable to read .env; continuing with environment variables only")
        settings = Settings(_env_file=None)
    return settings
