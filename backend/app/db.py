import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from app import config

logger = logging.getLogger(__name__)

# MongoDB Setup
client = None
db = None


def init_db(app, database=None):
    """Bind the application to a database.

    A ready database object (e.g. an in-memory one in tests) may be passed in;
    otherwise a Motor client is created from MONGODB_URI.
    """
    global client, db
    if database is None:
        client = AsyncIOMotorClient(config.MONGODB_URI)
        db = client.get_default_database(default="qced")
    else:
        db = database
    app.state.db = db


def get_db():
    return db


async def ensure_indexes(database=None):
    database = database if database is not None else get_db()

    await database["users"].create_index("email", unique=True)
    await database["users"].create_index("extension", unique=True)
    await database["users"].create_index("username", unique=True, sparse=True)
    await database["users"].create_index("employeeCode", unique=True, sparse=True)
    await database["users"].create_index("department")

    await database["departments"].create_index("name", unique=True)
    await database["departments"].create_index("organizationalCode", unique=True, sparse=True)

    await database["schedules"].create_index([("department", ASCENDING), ("isActive", ASCENDING)])

    await database["conversations"].create_index("key", unique=True)
    await database["conversation_reads"].create_index(
        [("user", ASCENDING), ("conversationId", ASCENDING)], unique=True
    )
    await database["message_reads"].create_index(
        [("user", ASCENDING), ("channelRole", ASCENDING)], unique=True
    )
    await database["messages"].create_index([("toRole", ASCENDING), ("createdAt", DESCENDING)])
    await database["messages"].create_index([("conversationId", ASCENDING), ("createdAt", DESCENDING)])

    await database["audit_logs"].create_index([("user", ASCENDING), ("createdAt", DESCENDING)])
    await database["audit_logs"].create_index(
        [("target", ASCENDING), ("targetId", ASCENDING), ("createdAt", DESCENDING)]
    )

    # Expired blacklist rows are removed by Mongo itself as well as by the cleanup task
    await database["blacklisted_tokens"].create_index("expiresAt", expireAfterSeconds=0)
    await database["blacklisted_tokens"].create_index("tokenId", unique=True)

    logger.info("MongoDB indexes ensured")
