import os
import sys
from dotenv import load_dotenv

load_dotenv()

# Detect environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"

# API Configuration
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8080"))
API_WORKERS = int(os.getenv("API_WORKERS", "1"))
API_PREFIX = os.getenv("API_PREFIX", "").rstrip("/")

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///taskboard.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"
SEED_SAMPLE_DATA = os.getenv("SEED_SAMPLE_DATA", "false").lower() == "true"

# Task board behaviour
DEFAULT_ACTOR = os.getenv("DEFAULT_ACTOR", "system")
BULK_MAX_RETRIES = int(os.getenv("BULK_MAX_RETRIES", "3"))
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "200"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "false").lower() == "true"
LOG_FILE = os.getenv("LOG_FILE")

# CORS Configuration with validation
ALLOWED_ORIGINS_STR = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:4200,http://localhost:8080,http://127.0.0.1:8080"
)
ALLOWED_ORIGINS = [origin.strip() for origin in ALLOWED_ORIGINS_STR.split(",") if origin.strip()]

if "*" in ALLOWED_ORIGINS:
    if IS_PRODUCTION:
        print("=" * 70)
        print("CRITICAL ERROR: Wildcard CORS (*) not allowed in production!")
        print("=" * 70)
        print("\nCurrent ALLOWED_ORIGINS contains wildcard '*'")
        print("\nSet specific origins in your .env file:")
        print("  ALLOWED_ORIGINS=https://board.example.com")
        print("\n" + "=" * 70)
        sys.exit(1)
    else:
        print("\n⚠️  WARNING: Wildcard CORS (*) detected in development mode")
        print("   This should NOT be used in production!\n")

if BULK_MAX_RETRIES < 1:
    print("CRITICAL ERROR: BULK_MAX_RETRIES must be at least 1")
    sys.exit(1)

if DEFAULT_PAGE_SIZE < 1 or DEFAULT_PAGE_SIZE > MAX_PAGE_SIZE:
    print(f"CRITICAL ERROR: DEFAULT_PAGE_SIZE must be between 1 and {MAX_PAGE_SIZE}")
    sys.exit(1)
