"""
Bootstrap a fresh database: indexes, the Administration department and the
default admin account.

    python -m app.seed.seed_admin
"""
import asyncio
import logging
from datetime import datetime
from motor.motor_asyncio import AsyncIOMotorClient
from app import config
from app.db import ensure_indexes
from app.services.auth_service import hash_password
from app.utils.logger import configure_logging

logger = logging.getLogger(__name__)

ADMIN_DEPARTMENT = {
    "name": "Administration",
    "organizationalCode": "ADM-01",
    "level": "administration",
    "description": "Chamber administration",
}


async def seed_admin(db) -> dict:
    """Create whatever is missing and report what was done."""
    if config.ENSURE_INDEXES:
        await ensure_indexes(db)

    now = datetime.utcnow()
    department = await db["departments"].find_one({"organizationalCode": ADMIN_DEPARTMENT["organizationalCode"]})
    created_department = False
    if department is None:
        department = {**ADMIN_DEPARTMENT, "isActive": True, "head": None, "createdAt": now, "updatedAt": now}
        result = await db["departments"].insert_one(department)
        department["_id"] = result.inserted_id
        created_department = True
        logger.info("Created Administration department")

    if await db["users"].find_one({"role": "admin"}):
        logger.info("An admin account already exists; nothing to do")
        return {"department": created_department, "admin": False}

    await db["users"].insert_one({
        "firstName": "System",
        "lastName": "Administrator",
        "email": config.DEFAULT_ADMIN_EMAIL.lower(),
        "username": config.DEFAULT_ADMIN_USERNAME,
        "extension": config.DEFAULT_ADMIN_EXTENSION,
        "password": hash_password(config.DEFAULT_ADMIN_PASSWORD),
        "role": "admin",
        "permissions": ["*"],
        "department": department["_id"],
        "position": "System Administrator",
        "employeeCode": "EMP-000000",
        "isActive": True,
        "loginAttempts": 0,
        "accountLocked": False,
        "documentsStatus": "approved",
        "createdAt": now,
        "updatedAt": now,
    })
    logger.info(f"Created admin account {config.DEFAULT_ADMIN_EMAIL} (extension {config.DEFAULT_ADMIN_EXTENSION})")
    if config.DEFAULT_ADMIN_PASSWORD == "admin123":
        logger.warning("Default admin password in use; change it after first login")
    return {"department": created_department, "admin": True}


async def run_seed():
    client = AsyncIOMotorClient(config.MONGODB_URI)
    try:
        await seed_admin(client.get_default_database(default="qced"))
    finally:
        client.close()


if __name__ == "__main__":
    configure_logging(config.LOG_LEVEL)
    asyncio.run(run_seed())
