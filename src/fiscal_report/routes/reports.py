"""Report routes — create, run stages, browse versions, roll back."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from fiscal_report.models.job import PipelineJob
from fiscal_report.models.report import Report, ReportStatus
from fiscal_report.models.stage import StageId, parse_stage_id
from fiscal_report.routes.errors import translate_errors

router = APIRouter(prefix="/reports", tags=["reports"])


class CreateReportRequest(BaseModel):
    client_name: str = ""
    raw_input: str


class RollbackRequest(BaseModel):
    stage_id: str
    change_index: int


class ContentRequest(BaseModel):
    content: str = Field(min_length=1)


class CreateJobRequest(BaseModel):
    stage_ids: list[str] = []


@router.get("/")
async def list_reports(request: Request, report_status: ReportStatus | None = None) -> list[dict]:
    """List active reports, newest first, optionally in one status."""
    services = request.app.state.services
    if report_status is None:
        reports = await services.reports.list_all()
    else:
        reports = await services.reports.get_by_status(report_status)
    return [report.model_dump(mode="json") for report in reports]


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_report(request: Request, body: CreateReportRequest) -> dict:
    """Create a draft report from the client's raw input."""
    services = request.app.state.services
    report = await services.reports.create(
        Report(client_name=body.client_name, raw_input=body.raw_input)
    )
    return report.model_dump(mode="json")


@router.get("/{report_id}")
async def get_report(request: Request, report_id: str) -> dict:
    """Return a report with the stages that may run next."""
    services = request.app.state.services
    with translate_errors():
        report = await services.reports.require(report_id)
    data = report.model_dump(mode="json")
    data["next_stages"] = [stage.value for stage in services.pipeline.next_runnable(report)]
    return data


@router.post("/{report_id}/stages/{stage_id}")
async def run_stage(request: Request, report_id: str, stage_id: str) -> dict:
    """Run one stage synchronously and return its output."""
    services = request.app.state.services
    _require_known_stage(stage_id)
    with translate_errors():
        execution = await services.pipeline.run_stage(report_id, stage_id)
    return execution.model_dump(mode="json")


@router.post("/{report_id}/stages/{stage_id}/manual")
async def record_manual_stage(
    request: Request, report_id: str, stage_id: str, body: ContentRequest
) -> dict:
    """Store stage output produced outside the pipeline."""
    services = request.app.state.services
    _require_known_stage(stage_id)
    with translate_errors():
        execution = await services.pipeline.record_manual_stage(report_id, stage_id, body.content)
    return execution.model_dump(mode="json")


@router.get("/{report_id}/stages/{stage_id}/prompt-preview")
async def preview_prompt(request: Request, report_id: str, stage_id: str) -> dict:
    """Show the exact prompt and model config a stage run would use."""
    services = request.app.state.services
    _require_known_stage(stage_id)
    with translate_errors():
        preview = await services.pipeline.preview_prompt(report_id, stage_id)
    return preview.model_dump(mode="json", by_alias=True)


@router.delete("/{report_id}/stages/{stage_id}")
async def delete_stage(request: Request, report_id: str, stage_id: str) -> dict:
    """Clear a stage and every later stage so the workflow can resume there."""
    services = request.app.state.services
    _require_known_stage(stage_id)
    with translate_errors():
        report = await services.pipeline.delete_stage(report_id, stage_id)
    return report.model_dump(mode="json")


@router.get("/{report_id}/content")
async def get_content(request: Request, report_id: str) -> dict:
    """Return the latest document version."""
    services = request.app.state.services
    with translate_errors():
        snapshot = await services.store.latest_snapshot(report_id)
    if snapshot is None:
        return {"version": None, "content": None}
    return {"version": snapshot.version, "content": snapshot.content}


@router.patch("/{report_id}/content")
async def edit_content(request: Request, report_id: str, body: ContentRequest) -> dict:
    """Save a hand-edited document as a new version."""
    services = request.app.state.services
    with translate_errors():
        snapshot = await services.store.edit_content(report_id, body.content)
    return snapshot.model_dump(mode="json")


@router.get("/{report_id}/versions")
async def list_versions(request: Request, report_id: str) -> list[dict]:
    """List all snapshots in version order."""
    services = request.app.state.services
    with translate_errors():
        snapshots = await services.store.list_snapshots(report_id)
    return [snapshot.model_dump(mode="json") for snapshot in snapshots]


@router.post("/{report_id}/versions/{version}/restore")
async def restore_version(request: Request, report_id: str, version: int) -> dict:
    """Make an older version current by appending a copy of it."""
    services = request.app.state.services
    with translate_errors():
        snapshot = await services.store.restore_version(report_id, version)
    return snapshot.model_dump(mode="json")


@router.get("/{report_id}/stages/{stage_id}/proposals")
async def list_proposals(request: Request, report_id: str, stage_id: str) -> dict:
    """Parsed proposals of a stage with rollback state and parse diagnostics."""
    services = request.app.state.services
    _require_known_stage(stage_id)
    with translate_errors():
        report = await services.reports.require(report_id)
        candidates = await services.rollback.list_rollbackable(report_id, stage_id)
    diagnostics = services.parser.parse_with_diagnostics(
        report.stage_results.get(stage_id, ""), stage_id
    )
    return {
        "proposals": [candidate.model_dump(mode="json") for candidate in candidates],
        "strategy": diagnostics.strategy,
        "degraded": diagnostics.degraded,
    }


@router.post("/{report_id}/rollback")
async def rollback_change(request: Request, report_id: str, body: RollbackRequest) -> dict:
    """Undo one reviewer change; failures are reported in the body."""
    services = request.app.state.services
    result = await services.rollback.rollback_change(report_id, body.stage_id, body.change_index)
    return result.model_dump(mode="json")


@router.post("/{report_id}/jobs", status_code=status.HTTP_202_ACCEPTED)
async def create_job(request: Request, report_id: str, body: CreateJobRequest) -> dict:
    """Queue stages to run in the worker; no stages means run to completion."""
    services = request.app.state.services
    stages = [_require_known_stage(stage_id) for stage_id in body.stage_ids]
    with translate_errors():
        await services.reports.require(report_id)
    job = await services.jobs.create(PipelineJob(report_id=report_id, stage_ids=stages))
    return job.model_dump(mode="json")


@router.get("/{report_id}/jobs")
async def list_jobs(request: Request, report_id: str) -> list[dict]:
    """List queued and finished pipeline jobs of a report, newest first."""
    services = request.app.state.services
    jobs = await services.jobs.list_for_report(report_id)
    return [job.model_dump(mode="json") for job in jobs]


@router.get("/{report_id}/adjustments")
async def list_adjustment_sessions(request: Request, report_id: str) -> list[dict]:
    """List adjustment sessions opened against a report."""
    services = request.app.state.services
    sessions = await services.adjustments.sessions_for_report(report_id)
    return [session.model_dump(mode="json") for session in sessions]


def _require_known_stage(stage_id: str) -> StageId:
    stage = parse_stage_id(stage_id)
    if stage is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown stage {stage_id}")
    return stage
