"""
FastAPI application entry point for the Clinic CRM backend.

Configures logging and CORS, opens the asyncpg pool on startup, and mounts
the routers that expose each job: Feegow sync, team scoring, churn
prediction, automation handlers, the sales digest and the Alexa webhook.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinic_crm import __version__
from clinic_crm.api import api_router
from clinic_crm.core.database import init_db, close_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Open the database pool on startup and close it on shutdown.

    A failed pool init is logged and startup continues: /health and the
    pure endpoints still answer, and get_db_pool() retries on first use.
    """
    logger.info("Clinic CRM API starting")
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")

    yield

    logger.info("Clinic CRM API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Clinic CRM API",
    version=__version__,
    description=(
        "Backend jobs for the clinic CRM: Feegow patient import, team scoring, "
        "churn prediction, automation handlers, Slack sales digest and Alexa reports."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check for monitoring and load balancer probes."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Clinic CRM API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clinic_crm.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
