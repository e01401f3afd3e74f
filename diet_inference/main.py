"""
Main FastAPI application
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from diet_inference.config import get_settings
from diet_inference.database import engine, Base, AsyncSessionLocal
from diet_inference.models import *  # noqa: F401,F403 - register every model on Base
from diet_inference.api import diet
from diet_inference.services.diet_rules import ENGINE_VERSION
from diet_inference.services.diet_tag_service import ensure_default_diet_tags
from diet_inference.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    # Seed default diet tags
    if settings.SEED_DEFAULT_DIET_TAGS:
        async with AsyncSessionLocal() as session:
            missing = await ensure_default_diet_tags(session)
            if not missing:
                logger.info("Default diet tags already present")

    yield

    await engine.dispose()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(diet.router, prefix="/api", tags=["Diet"])


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "engine_version": ENGINE_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "diet_inference.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
