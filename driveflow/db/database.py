# driveflow/db/database.py
import logging

import motor.motor_asyncio
from beanie import init_beanie

from driveflow.core.config import MONGODB_URL, DATABASE_NAME
from driveflow.models.approval import ApprovalRequest
from driveflow.models.audit_log import AuditLog
from driveflow.models.booking import Booking
from driveflow.models.counter import SequenceCounter
from driveflow.models.service import Service
from driveflow.models.user import User
from driveflow.models.vehicle import Vehicle

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [
    User,
    Vehicle,
    Service,
    Booking,
    ApprovalRequest,
    AuditLog,
    SequenceCounter,
]

_client = None


def get_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    global _client
    if _client is None:
        _client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)
    return _client


async def init_db():
    """Connect to MongoDB and register every Beanie document."""
    logger.info("Connecting to MongoDB...")
    database = get_client()[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    logger.info("Beanie initialization complete for all models.")


async def ping_db() -> bool:
    await get_client().admin.command("ping")
    return True


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB client closed.")
