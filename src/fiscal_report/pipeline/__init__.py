"""Stage pipeline orchestration components."""

from fiscal_report.pipeline.job_poller import JobPoller
from fiscal_report.pipeline.orchestrator import PromptPreview, StageExecution, StagePipeline

__all__ = ["JobPoller", "PromptPreview", "StageExecution", "StagePipeline"]
