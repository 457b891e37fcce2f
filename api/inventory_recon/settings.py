# inventory_recon/settings.py
"""
Inventory Recon settings, read from the environment and ``.env``.
"""
from __future__ import annotations
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # =========================================================================
    # Data root (log files)
    # =========================================================================
    INVENTORY_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "recon-data"),
        validation_alias=AliasChoices("INVENTORY_DATA_ROOT", "ir_data_root"),
    )
    LOG_LEVEL: str = "INFO"
    LOG_MAX_BYTES: int = 5_000_000
    LOG_BACKUP_COUNT: int = 3

    # =========================================================================
    # Store
    # =========================================================================
    # Full URL wins over the DB_* parts, e.g. sqlite+aiosqlite:///./recon.db
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "ir_database_url"),
    )
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "inventory_recon"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_ECHO: bool = False
    CREATE_TABLES_ON_STARTUP: bool = False

    # =========================================================================
    # Reconciliation
    # =========================================================================
    MATCH_THRESHOLD: float = Field(
        default=0.5,
        description="Minimum Jaccard similarity for a fuzzy product match",
    )
    BARCODE_MAX_LENGTH: int = 128
    SNAPSHOT_CACHE_TTL_SEC: float = 60.0
    DEFAULT_CURRENCY: str = "GBP"

    # =========================================================================
    # HTTP
    # =========================================================================
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def log_dir(self) -> Path:
        return Path(self.INVENTORY_DATA_ROOT).expanduser() / "logs"

settings = Settings()
