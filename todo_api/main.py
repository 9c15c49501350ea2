import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from todo_api.api import auth, password_reset, todos, users
from todo_api.core.config import Settings, get_settings
from todo_api.core.database import engine, ping_database
from todo_api.core.errors import request_validation_handler
from todo_api.core.middleware import MetricsMiddleware, RequestIDMiddleware, RequestMetrics
from todo_api.core.rate_limit import RateLimiter, RateLimitMiddleware
from todo_api.models import Base

root = logging.getLogger()
if not root.handlers:  # don't double-add in reloads
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(h)

root.setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


def create_app(
    settings: Settings | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    if rate_limiter is None:
        rate_limiter = RateLimiter(
            rate=settings.rate_limit_per_second,
            burst=settings.rate_limit_burst,
        )
    metrics = RequestMetrics()

    app = FastAPI(title="Todo API", version="0.1.0", lifespan=lifespan)
    app.state.rate_limiter = rate_limiter
    app.state.metrics = metrics

    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Accept-Language", "Content-Type", "Authorization"],
    )
    # Starlette runs the last added middleware first: request id, metrics, rate limit, CORS.
    app.add_middleware(
        RateLimitMiddleware,
        limiter=rate_limiter,
        trust_proxy_headers=settings.trust_proxy_headers,
    )
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(auth.router)
    app.include_router(password_reset.router)
    app.include_router(todos.router)
    app.include_router(users.router)

    @app.get("/api/health", tags=["health"])
    def health_check():
        """Report service status and confirm database connectivity."""
        database_status = "ok" if ping_database() else "error"
        return {
            "status": "ok",
            "database": database_status,
        }

    @app.get("/api/metrics", tags=["metrics"])
    def prometheus_metrics(request: Request) -> Response:
        return Response(
            generate_latest(request.app.state.metrics.registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    return app


app = create_app()
