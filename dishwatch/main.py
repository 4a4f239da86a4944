"""FastAPI application entry point"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .utils.config import load_config
from .utils.logger import setup_logger
from .orchestrator import MonitoringEngine
from .api.routes import router, set_engine, VERSION

# Global engine instance
engine: MonitoringEngine = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global engine

    logger = logging.getLogger(__name__)

    try:
        config = load_config()

        setup_logger(
            name="",  # Root logger
            level=config.logging.level,
            log_format=config.logging.format,
            log_file=config.logging.file,
            max_size_mb=config.logging.max_size_mb,
            backup_count=config.logging.backup_count,
        )

        logger.info("=" * 60)
        logger.info(f"Starting Dishwatch v{VERSION}")
        logger.info("=" * 60)

        engine = MonitoringEngine(config)
        set_engine(engine)
        await engine.start()

        logger.info("=" * 60)
        logger.info("✅ Application started successfully")
        logger.info(f"📡 Public URL: {config.server.public_url}")
        logger.info(f"💾 State file: {config.storage.state_file}")
        logger.info(
            f"⏱️  Thresholds: quiet {config.classifier.quiet_threshold_seconds}s, "
            f"confirm {config.classifier.confirm_threshold_seconds}s"
        )
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"❌ Failed to start application: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down gracefully...")

    if engine:
        await engine.stop()
    set_engine(None)

    logger.info("✅ Application stopped")


app = FastAPI(
    title="Dishwatch",
    description="Dishwasher cycle detection from smart-camera events",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "Dishwatch",
        "version": VERSION,
        "status": "running",
        "docs": "/docs",
    }


def main():
    """Main entry point"""
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 10000))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    uvicorn.run(
        "dishwatch.main:app",
        host=host,
        port=port,
        log_level=log_level,
        access_log=True,
        reload=False,
    )


if __name__ == "__main__":
    main()
