"""Application configuration and settings."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "freightconnect_database"

    # JWT
    jwt_secret_key: str = "freightconnect-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_days: int = 7

    # CORS
    cors_origins: str = "*"

    # Proximity search
    default_search_radius_m: int = 5000
    earth_radius_m: float = 6371000.0
    circle_polygon_vertices: int = 64

    # Distance bands
    band_write_retries: int = 5

    # Listings
    default_page_limit: int = 10
    max_page_limit: int = 100
    refine_candidate_cap: int = 1000

    # Connect request verification
    compatibility_threshold_m: int = 5000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
