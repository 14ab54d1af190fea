from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


# project root (the directory holding pyproject.toml)
BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    app_name: str = "Classifieds"

    # APP_ENV=dev / prod
    app_env: str = "dev"
    log_level: str = "INFO"

    # security / JWT / DB
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    password_hash_rounds: int = 12
    database_url: str = f"sqlite:///{BASE_DIR / 'classifieds.db'}"

    # uploaded listing images
    media_root: Path = BASE_DIR / "uploads"
    media_url: str = "/images"
    max_upload_bytes: int = 5 * 1024 * 1024
    allowed_image_extensions: list[str] = [".jpg", ".jpeg", ".png", ".gif", ".webp"]

    # catalog pagination
    default_page_size: int = 20
    max_page_size: int = 100

    cors_origins: list[str] = ["http://localhost:5173"]

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
