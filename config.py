"""Configuration and environment settings"""

from pydantic_settings import BaseSettings
from typing import Optional, List


class Settings(BaseSettings):
    """Application configuration"""

    # Provider credentials
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    GOOGLE_API_KEY: Optional[str] = None  # Gemini / Imagen

    # Remote generation backend (exposes /api/llm and /api/job-status/{jobId})
    PROVIDER_BACKEND_URL: Optional[str] = None
    PROVIDER_TIMEOUT: float = 120.0  # seconds

    # Model defaults for new cells
    DEFAULT_MODEL: str = "gpt-3.5-turbo"
    DEFAULT_TEMPERATURE: float = 0.7
    IMAGE_SIZE: str = "1024x1024"
    MAX_TOKENS: int = 4096  # used when a cell sets no character limit

    # Engine
    JOB_POLL_INTERVAL: float = 1.0  # seconds between job status checks
    JOB_POLL_MAX_ATTEMPTS: int = 120
    RESOLVE_MAX_DEPTH: int = 5  # nested prompt expansion
    GENERATION_SEPARATOR: str = "\n\n---\n\n"

    # Billing
    DEFAULT_CREDITS: int = 50

    # Supabase persistence
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    CELLS_TABLE: str = "cells"
    CONNECTIONS_TABLE: str = "connections"

    # Web
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    WEB_HOST: str = "0.0.0.0"
    WEB_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def get_cors_origins(self) -> List[str]:
        """Get allowed CORS origins"""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    def supabase_enabled(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)


settings = Settings()
