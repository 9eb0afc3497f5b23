from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional
import logging
import os

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///library.db"
    loan_period_days: int = 14
    fine_per_day: Decimal = Decimal("5.00")
    librarian_username: str = "librarian"
    librarian_password_hash: Optional[str] = None
    librarian_password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        loan_period = os.getenv("LOAN_PERIOD_DAYS", "14")
        fine_per_day = os.getenv("FINE_PER_DAY", "5.00")
        try:
            loan_period_days = int(loan_period)
        except ValueError:
            raise ValueError(f"LOAN_PERIOD_DAYS must be an integer, got {loan_period!r}")
        try:
            fine_rate = Decimal(fine_per_day).quantize(Decimal("0.01"))
        except InvalidOperation:
            raise ValueError(f"FINE_PER_DAY must be a decimal amount, got {fine_per_day!r}")
        if loan_period_days < 1:
            raise ValueError("LOAN_PERIOD_DAYS must be at least 1")
        if fine_rate < 0:
            raise ValueError("FINE_PER_DAY cannot be negative")

        return cls(
            database_url=os.getenv("DATABASE_URL", "") or "sqlite:///library.db",
            loan_period_days=loan_period_days,
            fine_per_day=fine_rate,
            librarian_username=os.getenv("LIBRARIAN_USERNAME", "librarian"),
            librarian_password_hash=os.getenv("LIBRARIAN_PASSWORD_HASH") or None,
            librarian_password=os.getenv("LIBRARIAN_PASSWORD") or None,
        )


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger("library")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
