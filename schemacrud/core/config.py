"""
Application Configuration - Loaded from .env file
"""
from functools import lru_cache
from typing import Dict, List
from pydantic_settings import BaseSettings
import json


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "SchemaCRUD"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database (default connection + named connections referenced by schemas)
    DATABASE_URL: str = "sqlite:///./schemacrud.db"
    DATABASE_CONNECTIONS: str = "{}"
    DB_POOL_PRE_PING: bool = True

    # Schema engine
    SCHEMA_PATH: str = "schema/crud"
    SCHEMA_CACHE_ENABLED: bool = False
    SCHEMA_CACHE_TTL: int = 3600
    SCHEMA_CACHE_PREFIX: str = "schemacrud:schema:"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Sprunje (generic list queries)
    SPRUNJE_DEFAULT_PAGE_SIZE: int = 25
    SPRUNJE_MAX_PAGE_SIZE: int = 100

    # JWT
    JWT_SECRET_KEY: str = "your-super-secret-key-change-in-production-min-32-chars"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Security
    CORS_ORIGINS: str = '["http://localhost:3000","http://localhost:8000"]'

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    @property
    def database_connections(self) -> Dict[str, str]:
        """Named connection URLs, e.g. {"reporting": "postgresql://..."}."""
        try:
            connections = json.loads(self.DATABASE_CONNECTIONS)
        except (json.JSONDecodeError, TypeError):
            return {}
        return connections if isinstance(connections, dict) else {}

    @property
    def cors_origins_list(self) -> List[str]:
        try:
            return json.loads(self.CORS_ORIGINS)
        except (json.JSONDecodeError, TypeError):
            return ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
