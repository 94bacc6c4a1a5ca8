from fastapi import APIRouter

from promo_engine.api.v1 import catalog
from promo_engine.api.v1 import promo_codes
from promo_engine.api.v1 import promotions
from promo_engine.api.v1 import webhooks
from promo_engine.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(promotions.router)
api_router.include_router(promo_codes.router)
api_router.include_router(webhooks.router)
api_router.include_router(catalog.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
