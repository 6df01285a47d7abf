from pydantic_settings import BaseSettings
from typing import Optional, List

class Settings(BaseSettings):
    PROJECT_NAME: str = "SchoolBoard"
    VERSION: str = "1.0.0"

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Hosted backend (PostgREST + auth). Empty URL selects the in-memory backend.
    BACKEND_URL: str = ""
    BACKEND_ANON_KEY: str = ""
    BACKEND_TIMEOUT: float = 10.0

    # Auth provider tokens
    JWT_SECRET: str
    JWT_AUDIENCE: Optional[str] = "authenticated"

    # Shared secret the backend sends with row change notifications
    REALTIME_WEBHOOK_SECRET: str = ""

    # Query layer defaults (seconds)
    ITEMS_PER_PAGE: int = 10
    QUERY_STALE_TIME: float = 60 * 5
    QUERY_GC_TIME: float = 60 * 30
    QUERY_RETRY: int = 1
    QUERY_MAX_RETRY_DELAY: float = 30.0
    REFETCH_ON_WINDOW_FOCUS: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    class Config:
        env_file = ".env"

settings = Settings()
