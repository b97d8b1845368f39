import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "sqlite:///library.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Header set by the upstream identity proxy with the verified user id
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-User-Id")

    # Sweep scheduling (the sweeps can also be run from cron via scripts/run_sweeps.py)
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED")
    OVERDUE_SWEEP_MINUTES = int(os.environ.get("OVERDUE_SWEEP_MINUTES", 60))
    EXPIRY_SWEEP_MINUTES = int(os.environ.get("EXPIRY_SWEEP_MINUTES", 15))

    # Listing settings
    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100

    # Circulation policy
    MAX_ACTIVE_LOANS = int(os.environ.get("MAX_ACTIVE_LOANS", 3))
    MAX_ACTIVE_RESERVATIONS = int(os.environ.get("MAX_ACTIVE_RESERVATIONS", 5))
    DEFAULT_LOAN_DAYS = int(os.environ.get("DEFAULT_LOAN_DAYS", 14))
    DEFAULT_RESERVATION_DAYS = int(os.environ.get("DEFAULT_RESERVATION_DAYS", 7))
    MAX_EXTENSION_DAYS = int(os.environ.get("MAX_EXTENSION_DAYS", 30))


@dataclass(frozen=True)
class LifecyclePolicy:
    """Limits and defaults applied by the loan and reservation services."""

    max_active_loans: int = 3
    max_active_reservations: int = 5
    default_loan_days: int = 14
    default_reservation_days: int = 7
    max_extension_days: int = 30

    @classmethod
    def from_config(cls, config) -> "LifecyclePolicy":
        """Build a policy from a Flask config mapping, falling back to defaults."""
        defaults = cls()
        return cls(
            max_active_loans=int(config.get("MAX_ACTIVE_LOANS", defaults.max_active_loans)),
            max_active_reservations=int(
                config.get("MAX_ACTIVE_RESERVATIONS", defaults.max_active_reservations)
            ),
            default_loan_days=int(config.get("DEFAULT_LOAN_DAYS", defaults.default_loan_days)),
            default_reservation_days=int(
                config.get("DEFAULT_RESERVATION_DAYS", defaults.default_reservation_days)
            ),
            max_extension_days=int(config.get("MAX_EXTENSION_DAYS", defaults.max_extension_days)),
        )
