"""Exception hierarchy for the report engine.

Parse failures and unmatched text are reported as data on results, not
raised. Only the conditions below interrupt a caller.
"""

from __future__ import annotations


class ReportEngineError(Exception):
    """Base class for all report engine errors."""


class ConfigurationMissingError(ReportEngineError):
    """A prompt template or model configuration needed by a stage is absent."""

    def __init__(self, message: str, missing_fields: list[str] | None = None) -> None:
        self.missing_fields = missing_fields or []
        if self.missing_fields:
            message = f"{message} (missing: {', '.join(self.missing_fields)})"
        super().__init__(message)


class StagePreconditionError(ReportEngineError):
    """A stage was requested before the stages it depends on recorded output."""

    def __init__(self, stage_id: str, missing: list[str]) -> None:
        self.stage_id = stage_id
        self.missing = missing
        super().__init__(
            f"Stage {stage_id} cannot run before: {', '.join(missing)}"
        )


class ReportNotFoundError(ReportEngineError):
    def __init__(self, report_id: str) -> None:
        self.report_id = report_id
        super().__init__(f"Report {report_id} not found")


class ModelInvocationError(ReportEngineError):
    """The model provider failed or returned nothing usable."""

    def __init__(self, message: str, *, provider: str = "", model: str = "") -> None:
        self.provider = provider
        self.model = model
        super().__init__(message)


class ModelTimeoutError(ModelInvocationError):
    """The model call exceeded its deadline and the wait was abandoned."""

    def __init__(self, timeout_s: float, *, provider: str = "", model: str = "") -> None:
        self.timeout_s = timeout_s
        super().__init__(
            f"Model call timed out after {timeout_s:g}s",
            provider=provider,
            model=model,
        )


class StageFailedError(ReportEngineError):
    """A stage's model call failed; the report has been marked as errored."""

    def __init__(self, stage_id: str, prompt: str, raw_error: str) -> None:
        self.stage_id = stage_id
        self.prompt = prompt
        self.raw_error = raw_error
        super().__init__(f"Stage {stage_id} failed: {raw_error}")


class VersionConflictError(ReportEngineError):
    """Another writer claimed the snapshot version this writer was about to take."""

    def __init__(self, report_id: str, version: int) -> None:
        self.report_id = report_id
        self.version = version
        super().__init__(f"Version {version} of report {report_id} was claimed concurrently")


class SessionStateError(ReportEngineError):
    """An adjustment session action is not allowed in the session's current state."""

    def __init__(self, session_id: str, state: str, action: str) -> None:
        self.session_id = session_id
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} session {session_id} in state {state}")
