"""Cosmos DB repositories."""

from fiscal_report.database.repositories.adjustments import (
    AdjustmentRepository,
    AdjustmentSessionRepository,
)
from fiscal_report.database.repositories.base import BaseRepository
from fiscal_report.database.repositories.jobs import JobRepository
from fiscal_report.database.repositories.prompt_configs import PromptConfigRepository
from fiscal_report.database.repositories.reports import ReportRepository

__all__ = [
    "AdjustmentRepository",
    "AdjustmentSessionRepository",
    "BaseRepository",
    "JobRepository",
    "PromptConfigRepository",
    "ReportRepository",
]
