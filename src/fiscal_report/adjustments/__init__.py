"""User-driven adjustment sessions over report content."""

from fiscal_report.adjustments.session import (
    AdjustmentService,
    AnalysisResult,
    ApplyResult,
    apply_direct,
)

__all__ = ["AdjustmentService", "AnalysisResult", "ApplyResult", "apply_direct"]
