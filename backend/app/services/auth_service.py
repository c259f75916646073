import re
import secrets
import logging
from datetime import datetime, timedelta
from typing import Optional
from passlib.context import CryptContext
from jose import JWTError, jwt
from fastapi import HTTPException, Request, status
from app import config
from app.db import get_db
from app.services.audit_service import audit_service, client_info, AuditAction, AuditTarget, AuditSeverity

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=config.BCRYPT_ROUNDS
)
SECRET_KEY = config.SECRET_KEY
ALGORITHM = config.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = config.ACCESS_TOKEN_EXPIRE_MINUTES
MIN_PASSWORD_LENGTH = 6


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token; `sub` must carry the employee id."""
    to_encode = data.copy()
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "type": "access",
        "jti": secrets.token_urlsafe(32),  # Unique token ID for blacklisting
        "iat": now.timestamp(),
    })
    # Older clients read userId instead of sub
    to_encode.setdefault("userId", to_encode.get("sub"))
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload


def _credential_queries(identifier: str) -> list:
    identifier = identifier.strip()
    queries = [{"email": identifier.lower()}]
    if re.fullmatch(r"\d{3,6}", identifier):
        queries.append({"extension": identifier})
    queries.append({"username": identifier})
    queries.append({"phone": identifier})
    return queries


async def authenticate(identifier: str, password: str, request: Optional[Request] = None) -> dict:
    """Resolve an employee by email, extension, username or phone and check the password.

    Failed attempts are counted; the account is locked once they exceed
    MAX_LOGIN_ATTEMPTS. Unknown identifiers and wrong passwords both answer
    401 "Invalid credentials".
    """
    db = get_db()
    invalid = HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    ip_address, user_agent = client_info(request)

    user = None
    for query in _credential_queries(identifier):
        user = await db["users"].find_one(query)
        if user:
            break

    if user is None:
        await audit_service.log_event(
            AuditAction.LOGIN_FAILED,
            AuditTarget.USER,
            details={"identifier": identifier, "reason": "unknown identifier"},
            ip_address=ip_address,
            user_agent=user_agent,
            severity=AuditSeverity.MEDIUM
        )
        raise invalid

    if user.get("accountLocked"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is locked due to too many failed login attempts"
        )

    if not verify_password(password, user.get("password")):
        attempts = user.get("loginAttempts", 0) + 1
        update = {"loginAttempts": attempts}
        locked = attempts > config.MAX_LOGIN_ATTEMPTS
        if locked:
            update["accountLocked"] = True
            logger.warning("Account %s locked after %d failed attempts", user["_id"], attempts)
        await db["users"].update_one({"_id": user["_id"]}, {"$set": update})

        await audit_service.log_event(
            AuditAction.ACCOUNT_LOCKED if locked else AuditAction.LOGIN_FAILED,
            AuditTarget.USER,
            user_id=user["_id"],
            target_id=user["_id"],
            details={"attempts": attempts},
            ip_address=ip_address,
            user_agent=user_agent,
            severity=AuditSeverity.HIGH if locked else AuditSeverity.MEDIUM
        )
        raise invalid

    if not user.get("isActive", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    now = datetime.utcnow()
    await db["users"].update_one(
        {"_id": user["_id"]},
        {"$set": {"loginAttempts": 0, "lastLogin": now}}
    )
    user["loginAttempts"] = 0
    user["lastLogin"] = now
    return user
