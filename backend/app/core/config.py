from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    # Plain strings so sqlite:/// and redis:// URLs are always accepted
    DATABASE_URL: str
    REDIS_URL: str

    # llm
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-4o-mini"
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    LLM_TIMEOUT_SECONDS: int = 120

    # public registry (Finnish Patent and Registration Office open data)
    REGISTRY_ENABLED: bool = True
    REGISTRY_BASE_URL: str = "https://avoindata.prh.fi/bis/v1"
    REGISTRY_TIMEOUT_SECONDS: int = 20
    REGISTRY_CACHE_TTL_SECONDS: int = 60 * 60 * 24

    # object storage
    STORAGE_DIR: str = "data/assets"
    STORAGE_PUBLIC_BASE_URL: str = "/files"
    MAX_UPLOAD_SIZE_MB: int = 25

    # pipeline
    GENERATION_MAX_RETRIES: int = 3
    # Enrichment results scoring below this need manual confirmation
    ENRICHMENT_CONFIRMATION_THRESHOLD: int = 60

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
