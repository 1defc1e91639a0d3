"""Reviewer feedback parsing."""

from fiscal_report.feedback.normalize import feedback_json
from fiscal_report.feedback.parser import FeedbackParser

__all__ = ["FeedbackParser", "feedback_json"]
