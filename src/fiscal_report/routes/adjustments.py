"""Adjustment session routes — analyze, decide, apply and preview."""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

from fiscal_report.models.adjustment import ApplyMode, DecisionKind
from fiscal_report.routes.errors import translate_errors

router = APIRouter(prefix="/adjustments", tags=["adjustments"])


class CreateSessionRequest(BaseModel):
    report_id: str | None = None
    content: str | None = None
    title: str = ""


class InstructionRequest(BaseModel):
    instruction: str


class DecisionRequest(BaseModel):
    proposal_id: str
    decision: DecisionKind
    edited_text: str | None = None


class ApplyRequest(BaseModel):
    mode: ApplyMode = ApplyMode.DIRECT
    proposal_ids: list[str] | None = None


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_session(request: Request, body: CreateSessionRequest) -> dict:
    """Open a session on a report or on pasted content."""
    service = request.app.state.services.adjustments
    with translate_errors():
        session = await service.create_session(
            report_id=body.report_id,
            content=body.content,
            title=body.title,
        )
    return session.model_dump(mode="json")


@router.get("/{session_id}")
async def get_session(request: Request, session_id: str) -> dict:
    """Return a session with its applied history."""
    service = request.app.state.services.adjustments
    with translate_errors():
        session = await service.get_session(session_id)
        history = await service.history(session_id)
    data = session.model_dump(mode="json")
    data["history"] = [entry.model_dump(mode="json") for entry in history]
    return data


@router.post("/{session_id}/analyze")
async def analyze(request: Request, session_id: str, body: InstructionRequest) -> dict:
    service = request.app.state.services.adjustments
    with translate_errors():
        result = await service.analyze(session_id, body.instruction)
    return result.model_dump(mode="json")


@router.post("/{session_id}/decisions")
async def decide(request: Request, session_id: str, body: DecisionRequest) -> dict:
    service = request.app.state.services.adjustments
    with translate_errors():
        session = await service.decide(
            session_id,
            body.proposal_id,
            body.decision,
            body.edited_text,
        )
    return session.model_dump(mode="json")


@router.post("/{session_id}/apply")
async def apply(request: Request, session_id: str, body: ApplyRequest) -> dict:
    service = request.app.state.services.adjustments
    with translate_errors():
        result = await service.apply(session_id, body.mode, body.proposal_ids)
    return result.model_dump(mode="json")


@router.post("/{session_id}/preview")
async def preview(request: Request, session_id: str, body: InstructionRequest) -> dict:
    """Generate a full rewrite of the session content for review."""
    service = request.app.state.services.adjustments
    with translate_errors():
        session = await service.propose_rewrite(session_id, body.instruction)
    return session.model_dump(mode="json")


@router.post("/{session_id}/accept-preview")
async def accept_preview(request: Request, session_id: str) -> dict:
    service = request.app.state.services.adjustments
    with translate_errors():
        result = await service.accept_preview(session_id)
    return result.model_dump(mode="json")
