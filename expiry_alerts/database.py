"""
Database bootstrap
Connects motor and registers the beanie document models
"""
import logging

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from expiry_alerts.config import Settings
from expiry_alerts.models.employee import Employee
from expiry_alerts.models.notification import NotificationRecord
from expiry_alerts.models.sent_notification import SentNotification
from expiry_alerts.models.snapshot import AggregateSnapshot

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [Employee, NotificationRecord, SentNotification, AggregateSnapshot]


async def init_db(config: Settings) -> AsyncIOMotorClient:
    """Open the Mongo client and initialise beanie; caller closes the client"""
    client = AsyncIOMotorClient(config.MONGODB_URL, serverSelectionTimeoutMS=config.MONGODB_TIMEOUT_MS)
    database = client[config.MONGODB_DB_NAME]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    logger.info(f"Connected to MongoDB: {config.MONGODB_DB_NAME}")
    return client
