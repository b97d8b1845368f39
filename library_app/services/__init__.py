from flask import current_app

from library_app.config import LifecyclePolicy
from library_app.services.catalog import CatalogService
from library_app.services.loans import LoanService
from library_app.services.locking import SweepResult
from library_app.services.reservations import ReservationService
from library_app.services.stats import StatsService


def loan_service() -> LoanService:
    """LoanService configured from the current app's policy settings."""
    return LoanService(LifecyclePolicy.from_config(current_app.config))


def reservation_service() -> ReservationService:
    """ReservationService configured from the current app's policy settings."""
    return ReservationService(LifecyclePolicy.from_config(current_app.config))


__all__ = [
    "CatalogService",
    "LoanService",
    "ReservationService",
    "StatsService",
    "SweepResult",
    "loan_service",
    "reservation_service",
]
