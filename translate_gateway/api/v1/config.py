"""Config API — read and hot-reload the translator configuration."""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from translate_gateway.api.deps import get_gateway
from translate_gateway.gateway.errors import ProviderConfigError
from translate_gateway.gateway.gateway import TranslationGateway

router = APIRouter(prefix="/config", tags=["config"])


@router.get("")
async def get_config(gateway: TranslationGateway = Depends(get_gateway)):
    """Current configuration (API key masked — never returns the actual value)."""
    return gateway.config.masked()


@router.put("")
async def update_config(
    partial: dict[str, Any] = Body(...),
    gateway: TranslationGateway = Depends(get_gateway),
):
    """Deep-merge a partial config and apply it live."""
    # The masked placeholder coming back from a GET must not overwrite the real key
    provider = partial.get("provider")
    if isinstance(provider, dict) and provider.get("api_key") == "***":
        partial = {**partial, "provider": {k: v for k, v in provider.items() if k != "api_key"}}

    try:
        config = gateway.update_config(partial)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))
    except ProviderConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return config.masked()
