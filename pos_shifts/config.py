"""Project settings loaded from environment variables."""

from dataclasses import dataclass
from pathlib import Path
import os
from typing import List

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent
ENV_FILE = ROOT_DIR.parent / ".env"

load_dotenv(ENV_FILE)


def _as_bool(value: str | None) -> bool:
    """Coerce an environment string to bool."""
    return str(value).lower() in {"1", "true", "yes", "on"}


def _as_list(value: str | None) -> List[str]:
    """Split a comma separated string into trimmed items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_int_list(value: str | None) -> List[int]:
    return [int(item) for item in _as_list(value)]


@dataclass(frozen=True)
class Settings:
    database_url: str
    debug: bool
    timezone: str
    register_numbers: list[int]
    credit_payment_method_id: int


settings = Settings(
    database_url=os.getenv(
        "DATABASE_URL",
        "postgresql+psycopg://postgres:postgres@db:5432/pos_shifts"
    ),
    debug=_as_bool(os.getenv("POS_DEBUG", "False")),
    timezone=os.getenv("POS_TIMEZONE", "America/Tegucigalpa"),
    register_numbers=_as_int_list(os.getenv("POS_REGISTER_NUMBERS", "1,2")),
    credit_payment_method_id=int(os.getenv("POS_CREDIT_PAYMENT_METHOD_ID", "1")),
)
