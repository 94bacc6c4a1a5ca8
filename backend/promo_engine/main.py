from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from promo_engine.api.v1 import api_router
from promo_engine.core.config import settings
from promo_engine.core.errors import BatchAborted, PricingError
from promo_engine.core.logging_config import configure_logging
from promo_engine.db.session import dispose_engine
from promo_engine.middleware import RequestLoggingMiddleware
from promo_engine.schemas.error import ErrorResponse
from promo_engine.services import expiry


@asynccontextmanager
async def lifespan(app: FastAPI):
    expiry.start(app)
    yield
    await expiry.stop(app)
    await dispose_engine()


def get_application() -> FastAPI:
    configure_logging(settings.log_json, settings.log_level.upper())
    tags_metadata = [
        {"name": "promotions", "description": "Admin promotion rules"},
        {"name": "promo-codes", "description": "Owner promo codes and checkout validation"},
        {"name": "payments", "description": "Payment confirmations"},
        {"name": "catalog", "description": "Catalog price reads"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router)

    @app.exception_handler(PricingError)
    async def pricing_error_handler(request: Request, exc: PricingError):
        payload = ErrorResponse(error=exc.message, code=exc.code).model_dump()
        if isinstance(exc, BatchAborted):
            payload["summary"] = exc.summary.as_dict()
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(error=exc.detail, code=None)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(error=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
