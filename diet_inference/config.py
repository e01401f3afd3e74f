"""
Configuration management for the Diet Inference Service
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Diet Inference Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./diet_inference.db"

    # Diet inference
    SEED_DEFAULT_DIET_TAGS: bool = True
    INFERENCE_UPSERT_ATTEMPTS: int = 2  # retries after a unique-key conflict

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
