#!/usr/bin/env python3
"""
Study concept tournament - backend entry point
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from concept_tournament.core.config import settings
from concept_tournament.api import api_router
from concept_tournament.core.database import init_db
from concept_tournament.services.tournament_service import get_controller

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and pick up tournaments interrupted by the last shutdown"""
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION}")
    await init_db()

    try:
        await get_controller().resume_interrupted()
    except Exception:
        logger.exception("Resuming interrupted tournaments failed; they can be restarted manually")

    yield
    logger.info("Shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-lane, multi-round tournament for clinical study concepts",
    version=settings.VERSION,
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    """Root health check"""
    return {"message": f"{settings.APP_NAME} running", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "concept-tournament"}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
