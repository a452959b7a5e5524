import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        jwt_secret: str,
        jwt_refresh_secret: str,
        jwt_algorithm: str,
        access_token_minutes: int,
        refresh_token_days: int,
        cors_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.jwt_secret = jwt_secret
        self.jwt_refresh_secret = jwt_refresh_secret
        self.jwt_algorithm = jwt_algorithm
        self.access_token_minutes = access_token_minutes
        self.refresh_token_days = refresh_token_days
        self.cors_origins = cors_origins


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    jwt_secret = os.getenv(
        "EXPENSES_JWT_SECRET",
        "3f9c1e0b7a52d4c8e6f1a9b2d7c40e5f8a1b6c3d9e2f7a4b0c5d8e1f6a3b9c2d",
    )
    jwt_refresh_secret = os.getenv(
        "EXPENSES_JWT_REFRESH_SECRET",
        "a7d2e9f4c1b8063e5d9a2f7c4b1e8d3a6f0c9b2e5d8a1f4c7b0e3d6a9f2c5b8e",
    )
    jwt_algorithm = os.getenv("EXPENSES_JWT_ALGORITHM", "HS256")
    access_token_minutes = int(os.getenv("EXPENSES_ACCESS_TOKEN_MINUTES", "15"))
    refresh_token_days = int(os.getenv("EXPENSES_REFRESH_TOKEN_DAYS", "7"))
    cors_origins = _split_origins(
        os.getenv(
            "EXPENSES_CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
        )
    )
    return Settings(
        database_url=database_url,
        jwt_secret=jwt_secret,
        jwt_refresh_secret=jwt_refresh_secret,
        jwt_algorithm=jwt_algorithm,
        access_token_minutes=access_token_minutes,
        refresh_token_days=refresh_token_days,
        cors_origins=cors_origins,
    )
