"""Stats API — scheduler, cache and job snapshot."""

from fastapi import APIRouter, Depends

from translate_gateway.api.deps import get_gateway
from translate_gateway.gateway.gateway import TranslationGateway
from translate_gateway.schemas.translate import StatsResponse

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=StatsResponse)
async def get_stats(gateway: TranslationGateway = Depends(get_gateway)):
    return gateway.get_status()
