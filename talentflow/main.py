"""FastAPI application entry point."""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from talentflow.config import settings
from talentflow.database import Database
from talentflow.routers import approvals, flows, pipeline, rules
from talentflow.services.bootstrap import build_orchestrator

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=settings.log_level.upper()
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    db = None
    if settings.storage_backend == "mongodb":
        await Database.connect()
        await Database.ensure_indexes()
        db = Database.get_database()
    orchestrator = await build_orchestrator(settings, db)
    app.state.orchestrator = orchestrator
    if settings.scheduler_enabled:
        orchestrator.start()
    yield
    # Shutdown
    await orchestrator.stop()
    if settings.storage_backend == "mongodb":
        await Database.disconnect()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rules.router)
app.include_router(flows.router)
app.include_router(approvals.router)
app.include_router(pipeline.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Talentflow Pipeline Automation API",
        "version": settings.app_version,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
