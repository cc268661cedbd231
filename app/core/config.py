from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import os


class Settings(BaseSettings):
    APP_NAME: str = "Storefront Promo Service"
    DEBUG: bool = False

    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/storefront.db")

    @property
    def DATABASE_URL(self) -> str:
        # Relative paths resolve against the project root, not the working directory
        db_path = self.DATABASE_PATH
        if not os.path.isabs(db_path):
            project_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
            db_path = os.path.join(project_dir, db_path)
        return f"sqlite:///{os.path.abspath(db_path)}"

    SECRET_KEY: str = os.getenv("SECRET_KEY", "storefront-dev-secret-change-me")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 1 day

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # Required in X-Admin-API-Key header for /admin/promo endpoints
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

    # Promo codes
    CURRENCY_SYMBOL: str = "$"
    PROMO_STATS_CACHE_TTL: int = 120
    PROMO_TOP_LIMIT: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"  # Ignore extra environment variables
    )


settings = Settings()
