"""FastAPI application entry point for the link shortener service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan():  │
    │ init_db()    │
    │ services     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan():  │
    │ cleanup      │
    │ close_db()   │
    │ close_redis()│
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlinks.main:app --host 0.0.0.0 --port 4000 --reload

**Step 2 — Shorten a URL**::
    curl -X POST http://localhost:4000/api/urls \
         -H "Content-Type: application/json" \
         -d '{"originalUrl": "https://example.com"}'

Key Behaviours
===============
- Tables are created on startup (no migrations).
- The optional-identity gate runs for every request as an app dependency.
- Errors, including unknown routes, use the JSON error envelope.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortlinks.auth import current_identity
from shortlinks.config import get_settings
from shortlinks.database import close_db, init_db
from shortlinks.dependencies import _service_manager
from shortlinks.errors import register_exception_handlers
from shortlinks.redis import close_redis
from shortlinks.routes import auth_router, health_router, urls_router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await _service_manager.initialize()
    await init_db()
    _service_manager.logger.info(f"{settings.APP_NAME} started ({settings.APP_ENV})")
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Shorten URLs, track visits and share them as QR codes",
    lifespan=lifespan,
    dependencies=[Depends(current_identity)],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
).instrument(app).expose(app, include_in_schema=False)

app.include_router(health_router)
app.include_router(urls_router)
app.include_router(auth_router)
