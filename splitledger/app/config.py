from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List

class Settings(BaseSettings):
    # Database settings
    database_url: str = "sqlite:///./splitledger.db"

    # Currencies accepted on expenses, budget entries and scheduled payloads
    supported_currencies: List[str] = ["USD", "EUR", "GBP", "INR", "CAD", "AUD", "JPY", "CHF", "CNY", "SGD"]
    default_currency: str = "USD"

    # Reporting
    monthly_report_lookback_years: int = 2

    # Seconds a balance rebuild waits for the group's write section
    rebuild_lock_timeout_seconds: float = 5.0

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "SPLITLEDGER_"

@lru_cache()
def get_settings():
    return Settings()
