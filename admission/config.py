from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_prefix='ADMISSION_',
        env_ignore_empty=True,
        extra='ignore',
    )

    # Database
    database_url: str = 'sqlite+aiosqlite:///data/tickets.db'
    sql_echo: bool = False
    sqlite_busy_timeout_ms: int = 5000

    @field_validator('database_url', mode='before')
    @classmethod
    def use_async_driver(cls, v: str) -> str:
        if isinstance(v, str) and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Event
    max_tickets: int = 200
    event_name: str = 'Admission'
    default_category: str = 'Standard'
    default_seat: str = 'Free seating'

    # Read projections
    free_numbers_default: int = 10
    free_numbers_max: int = 50
    recent_tickets_default: int = 50
    recent_tickets_max: int = 200

    # Snapshots
    backup_dir: str = 'data/backups'
    backup_keep: int = 14
    backup_interval_minutes: int = 0

    log_level: str = 'INFO'


@lru_cache
def get_settings() -> Settings:
    return Settings()
