# communityeats/main.py
#
# Run with: uvicorn communityeats.main:create_app --factory

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from communityeats.api import account, admin, conversations, listings
from communityeats.core.config import Settings, get_settings
from communityeats.core.errors import CommunityEatsError
from communityeats.core.rate_limit import configure_limits, limiter
from communityeats.core.security import IdentityVerifier
from communityeats.infra.database import Database, get_database
from communityeats.infra.s3 import ImageBucket
from communityeats.utils.logger import setup_logger

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"

    error = errors[0]
    message = str(error.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]

    location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    return f"{'.'.join(location)}: {message}" if location else message


def register_error_handlers(app: FastAPI):
    @app.exception_handler(CommunityEatsError)
    async def handle_domain_error(request: Request, exc: CommunityEatsError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RateLimitExceeded)
    async def handle_rate_limit(request: Request, exc: RateLimitExceeded):
        return JSONResponse(status_code=429, content={"error": f"Rate limit exceeded: {exc.detail}"})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal error"})


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    image_bucket: Optional[ImageBucket] = None,
    verifier: Optional[IdentityVerifier] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logger(settings.log_level)

    app = FastAPI(
        title="CommunityEats Backend",
        version="1.0.0",
        description="Surplus food listings, moderation and per-listing messaging",
    )

    app.state.settings = settings
    app.state.database = database or get_database(settings.database_url)
    app.state.image_bucket = image_bucket or ImageBucket.from_settings(settings)
    app.state.verifier = verifier or IdentityVerifier.from_settings(settings)

    configure_limits(settings)
    app.state.limiter = limiter

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Register routers
    app.include_router(account.router, tags=["Account"])
    app.include_router(listings.router, tags=["Listings"])
    app.include_router(listings.short_links, tags=["Listings"])
    app.include_router(conversations.router, tags=["Conversations"])
    app.include_router(admin.router, tags=["Admin"])

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
