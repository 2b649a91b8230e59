"""
Main FastAPI application for TrustCircle Verification Engine
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from trustcircle.config import settings
from trustcircle.api import (
    system,
    device,
    movement,
    presence,
    checkin
)
from trustcircle.db.database import Base, engine

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting TrustCircle Verification Engine...")
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ready")
    except Exception as e:
        logger.error(f"Error preparing database tables: {e}")

    yield

    # Shutdown
    logger.info("Shutting down TrustCircle Verification Engine...")
    engine.dispose()


app = FastAPI(
    title="TrustCircle Verification Engine",
    description="Presence and trust verification for neighborhood residency badges",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers (prefixes are declared on each router)
app.include_router(system.router, tags=["System"])
app.include_router(device.router)
app.include_router(movement.router)
app.include_router(presence.router)
app.include_router(checkin.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "TrustCircle Verification Engine",
        "version": "1.0.0",
        "status": "running"
    }
