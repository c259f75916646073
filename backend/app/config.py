import os
from dotenv import load_dotenv

# Values are read once at import time; main.py loads .env before importing app modules
load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/qced")
ENSURE_INDEXES = os.getenv("ENSURE_INDEXES", "1") == "1"

DEV_SECRET_KEY = "testing_secret_key_for_development_only"
SECRET_KEY = os.getenv("SECRET_KEY", DEV_SECRET_KEY)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ORGANIZATION_NAME = os.getenv("ORGANIZATION_NAME", "Qassim Chamber")

TOKEN_CLEANUP_INTERVAL_HOURS = int(os.getenv("TOKEN_CLEANUP_INTERVAL_HOURS", "24"))

DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@qassimchamber.org.sa")
DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123")
DEFAULT_ADMIN_EXTENSION = os.getenv("DEFAULT_ADMIN_EXTENSION", "1000")
DEFAULT_ADMIN_USERNAME = os.getenv("DEFAULT_ADMIN_USERNAME", "admin")

DISABLE_RATE_LIMIT = os.getenv("DISABLE_RATE_LIMIT", "0") == "1"
RATE_LIMIT = int(os.getenv("RATE_LIMIT", "500"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "900"))
AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", "5"))
REDIS_URL = os.getenv("REDIS_URL")
