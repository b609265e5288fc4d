"""
Configuration Management for the Personal Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine itself takes no configuration beyond what is read here,
so every tunable is visible in one file and validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    url: str = Field(
        default="sqlite:///ledger.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement (debugging only)"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times to retry the initial connection"
    )
    busy_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long a SQLite writer waits for the database lock"
    )
    
    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject obviously malformed URLs early."""
        if "://" not in v:
            raise ValueError(f"Database URL must include a scheme: {v}")
        return v
    
    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class LedgerSettings(BaseSettings):
    """
    Ledger engine settings.
    
    Read from LEDGER_* environment variables and the .env file.
    """
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Environment
    environment: str = Field(
        default="development",
        description="development logs to the console; anything else logs JSON"
    )
    debug_mode: bool = Field(
        default=False,
        description="Log the ledger engine at DEBUG level"
    )
    
    # Labels
    default_currency: str = Field(
        default="USD",
        min_length=1,
        max_length=10,
        description="Currency label given to new accounts (label only, no FX)"
    )
    goal_account_prefix: str = Field(
        default="💰 ",
        description="Prefix for the name of the asset account created for a goal"
    )
    
    # Read-side windows
    upcoming_window_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="How far ahead a recurring rule counts as due soon"
    )
    report_months: int = Field(
        default=6,
        ge=1,
        le=36,
        description="Number of months in the income vs expense report"
    )


class Settings(BaseSettings):
    """
    Root settings container.
    
    Groups the database and ledger settings.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()
    
    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings(settings: Optional[Settings] = None) -> dict[str, bool]:
    """
    Validate all settings are properly configured.
    
    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = settings or get_settings()

    try:
        _ = settings.database
        results["database"] = True
    except Exception as e:
        results["database"] = False
        results["database_error"] = str(e)

    try:
        _ = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    return results
