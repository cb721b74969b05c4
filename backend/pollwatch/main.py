"""
Point d'entrée principal de l'API PollWatch (monitoring électoral).
Démarrage : uvicorn pollwatch.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import pollwatch.models  # noqa: F401  (enregistre tous les modèles dans Base.metadata avant les routers)
from pollwatch.logging_config import setup_logging
from pollwatch.routers import monitor_keys, monitoring
from pollwatch.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application : logging, puis démarrage/arrêt du scheduler APScheduler."""
    setup_logging()
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="PollWatch API",
    description="API de collecte des rapports de monitoring électoral (offline-first)",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise tous les ports localhost en développement (à restreindre en production).
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-User-Id"],
)


app.include_router(monitoring.router)
app.include_router(monitor_keys.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées : réponse 500 générique
    (passant par CORSMiddleware), détail consigné côté serveur uniquement.
    """
    logger.error("Exception non gérée sur %s : %s", request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": "PROCESSING_ERROR", "message": "An internal error occurred."}},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "PollWatch API", "version": "0.1.0"}
