import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    data_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    db_timeout: float = float(os.getenv("DB_TIMEOUT", "5"))

    # Circulation rules
    fine_per_day: float = float(os.getenv("FINE_PER_DAY", "5"))
    max_borrow_days: int = int(os.getenv("MAX_BORROW_DAYS", "14"))

    # Compensation / reconciliation
    reconcile_retries: int = int(os.getenv("RECONCILE_RETRIES", "3"))
    reconcile_backoff: float = float(os.getenv("RECONCILE_BACKOFF", "0.05"))

    # Pagination settings
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
