from fastapi import APIRouter

from translate_gateway.api.v1.config import router as config_router
from translate_gateway.api.v1.stats import router as stats_router
from translate_gateway.api.v1.translate import router as translate_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(translate_router)
api_v1_router.include_router(config_router)
api_v1_router.include_router(stats_router)
