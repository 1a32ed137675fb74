import os
import re
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()
logger = logging.getLogger('config')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env_number(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default

    numeric_part = re.search(r'^\d+\.?\d*', value.strip())
    if numeric_part:
        return float(numeric_part.group(0))

    logger.warning(f"Invalid value for {name}: '{value}'. Using default of {default}")
    return default


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: str = Field("sqlite:///price_tracker.db", description="SQLAlchemy database URL")
    fetch_timeout_seconds: float = Field(8.0, gt=0, description="Hard deadline for one page fetch")
    scrape_interval_hours: float = Field(6.0, gt=0, description="Interval between scheduled sweeps")
    max_workers: int = Field(4, ge=1, description="Concurrent fetches during a sweep")
    default_currency: str = Field("₺", description="Currency used when a page carries no signal")

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_ssl: bool = True
    notify_from: Optional[str] = None

    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_settings() -> Settings:
    """Build settings from the environment (and .env, if present)."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///price_tracker.db"),
        fetch_timeout_seconds=_env_number("FETCH_TIMEOUT_SECONDS", 8.0),
        scrape_interval_hours=_env_number("SCRAPE_INTERVAL_HOURS", 6.0),
        max_workers=int(_env_number("MAX_WORKERS", 4)) or 1,
        default_currency=os.getenv("DEFAULT_CURRENCY", "₺"),
        smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        smtp_port=int(_env_number("SMTP_PORT", 465)),
        smtp_user=os.getenv("SMTP_USER"),
        smtp_password=os.getenv("SMTP_PASSWORD"),
        smtp_use_ssl=_env_flag("SMTP_USE_SSL", True),
        notify_from=os.getenv("NOTIFY_FROM"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE") or None,
    )


def configure_logging(settings: Settings, log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler()]

    path = log_file or settings.log_file
    if path:
        handlers.append(logging.FileHandler(path))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )
