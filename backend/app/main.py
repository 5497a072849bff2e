from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .routes_publications import router as publications_router
from .settings import get_settings

logger = logging.getLogger("app")

settings = get_settings()
app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok", "environment": settings.environment}


app.include_router(publications_router)

# uploaded media and generated thumbnails; absolute MEDIA_BASE_URL means a CDN serves them
if settings.media_base_url.startswith("/"):
    app.mount(
        settings.media_base_url.rstrip("/") or "/media",
        StaticFiles(directory=settings.media_root, check_dir=False),
        name="media",
    )


@app.on_event("startup")
async def startup_event():
    """Start the scheduled-publish job unless SCHEDULER_ENABLED=false."""
    from app.services.scheduler import scheduler_service

    scheduler_service.configure(settings.async_database_url)
    scheduler_service.start()
    logger.info(f"[startup] {settings.app_name} ready, media served from {settings.media_root}")


@app.on_event("shutdown")
async def shutdown_event():
    from app.services.scheduler import scheduler_service

    scheduler_service.stop()
