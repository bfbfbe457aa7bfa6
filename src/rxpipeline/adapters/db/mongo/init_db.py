"""
Database connection setup (MongoDB + Beanie) for the worker processes.
"""

import logging
from typing import Optional

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from rxpipeline.core.config import DatabaseSettings, get_settings
from rxpipeline.core.exceptions import DatabaseError

from .models.prescription_m import PrescriptionMongo

logger = logging.getLogger(__name__)


async def init_database(settings: Optional[DatabaseSettings] = None) -> AsyncIOMotorClient:
    """Connect to MongoDB and register the document models."""
    settings = settings or get_settings().database
    mongo_uri = settings.uri

    # Enable TLS only for Atlas SRV URIs
    if mongo_uri.startswith("mongodb+srv://"):
        client = AsyncIOMotorClient(
            mongo_uri,
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
            tls=True,
            tlsCAFile=certifi.where(),
            tlsAllowInvalidCertificates=False,
        )
    else:
        # Local/standard connection (no TLS)
        client = AsyncIOMotorClient(
            mongo_uri,
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        )

    try:
        await init_beanie(
            database=client[settings.db_name],
            document_models=[PrescriptionMongo],
        )
    except Exception as e:
        client.close()
        raise DatabaseError(f"Database connection failed: {e}", {"db_name": settings.db_name}) from e

    logger.info(f"Database connection established (db={settings.db_name})")
    return client
