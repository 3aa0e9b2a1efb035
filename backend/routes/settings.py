"""Health check and settings endpoints."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from voiceforge.config import Settings, update_config
from voiceforge.services import build_services

router = APIRouter()


def _public(settings: Settings) -> dict:
    data = settings.model_dump(mode="json")
    if data["llm"]["api_key"]:
        data["llm"]["api_key"] = "***"
    return data


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Current settings (LLM connection, retry policy, validation vocabulary). API key masked."""
    return _public(request.app.state.services.settings)


@router.patch("/settings")
async def update_settings(body: dict, request: Request):
    """Update settings (partial merge) and rebuild the services with them."""
    services = request.app.state.services
    try:
        settings = update_config(services.settings.data_dir, body)
    except ValidationError as e:
        raise HTTPException(422, str(e))
    request.app.state.services = build_services(settings, llm=request.app.state.llm_override)
    return _public(settings)
