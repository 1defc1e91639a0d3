"""Prompt configuration routes — templates and model settings per stage."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status

from fiscal_report.models.ai_config import PromptConfig

router = APIRouter(prefix="/prompt-configs", tags=["prompt-configs"])


@router.get("/active")
async def get_active(request: Request) -> dict:
    """Return the configuration every stage currently runs with."""
    services = request.app.state.services
    config = await services.prompt_configs.get_active()
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No active prompt configuration"
        )
    return config.model_dump(mode="json", by_alias=True)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_config(request: Request, body: PromptConfig) -> dict:
    """Store a configuration; it is activated when submitted with ``isActive``."""
    services = request.app.state.services
    activate = body.is_active
    body.is_active = False
    config = await services.prompt_configs.create(body)
    if activate:
        config = await services.prompt_configs.activate(config)
    return config.model_dump(mode="json", by_alias=True)


@router.post("/{config_id}/activate")
async def activate_config(request: Request, config_id: str) -> dict:
    """Make one configuration active and deactivate the rest."""
    services = request.app.state.services
    config = await services.prompt_configs.get(config_id, config_id)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Prompt config {config_id} not found"
        )
    config = await services.prompt_configs.activate(config)
    return config.model_dump(mode="json", by_alias=True)
