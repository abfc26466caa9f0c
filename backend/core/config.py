"""
Configuration management for EduVault backend and client.
Loads configuration from environment variables and .env file.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
# Look for .env file in the project root or the backend directory
BACKEND_DIR = Path(__file__).parent.parent
PROJECT_ROOT = BACKEND_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"

if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
else:
    backend_env = BACKEND_DIR / ".env"
    if backend_env.exists():
        load_dotenv(backend_env)

# Base paths
BASE_DIR = PROJECT_ROOT
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
UPLOADS_DIR = Path(os.getenv("UPLOADS_DIR", str(DATA_DIR / "uploads")))
ASSESSMENT_UPLOADS_DIR = UPLOADS_DIR / "assessments"
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "eduvault.db")))
SCHEMA_FILE = BACKEND_DIR / "db" / "schema.sql"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
ASSESSMENT_UPLOADS_DIR.mkdir(parents=True, exist_ok=True)

# Client configuration
# The web and mobile frontends used different variable names for the same URL
BACKEND_URL = (
    os.getenv("EDUVAULT_BACKEND_URL")
    or os.getenv("REACT_APP_BACKEND_URL")
    or os.getenv("EXPO_PUBLIC_API_BASE_URL")
    or "http://localhost:5001"
)
API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "10"))

# API configuration
API_PREFIX = "/api"
CORS_ORIGINS_STR = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")
CORS_ORIGINS = [origin.strip() for origin in CORS_ORIGINS_STR.split(",") if origin.strip()]
PORT = int(os.getenv("PORT", "5001"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-please-32chars")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_HOURS = int(os.getenv("JWT_EXPIRES_HOURS", "24"))
USER_ROLES = ("student", "mini_admin", "super_admin")
ADMIN_ROLES = ("mini_admin", "super_admin")

# M-Pesa (Daraja) configuration
MPESA_BASE_URL = os.getenv("MPESA_BASE_URL", "https://sandbox.safaricom.co.ke")
MPESA_CONSUMER_KEY = os.getenv("MPESA_CONSUMER_KEY", None)
MPESA_CONSUMER_SECRET = os.getenv("MPESA_CONSUMER_SECRET", None)
MPESA_SHORTCODE = os.getenv("MPESA_SHORTCODE", "174379")
MPESA_PASSKEY = os.getenv("MPESA_PASSKEY", None)
MPESA_CALLBACK_URL = os.getenv("MPESA_CALLBACK_URL", "http://localhost:5001/api/subscription/mpesa/callback")
MPESA_TIMEOUT_SECONDS = float(os.getenv("MPESA_TIMEOUT_SECONDS", "30"))

# Subscription economics
SUBSCRIPTION_PRICE = int(os.getenv("SUBSCRIPTION_PRICE", "100"))
SUBSCRIPTION_CURRENCY = os.getenv("SUBSCRIPTION_CURRENCY", "KSH")
SUBSCRIPTION_DURATION_DAYS = int(os.getenv("SUBSCRIPTION_DURATION_DAYS", "30"))
MAX_STUDY_YEARS = int(os.getenv("MAX_STUDY_YEARS", "6"))

# Subscription status polling (client)
SUBSCRIPTION_POLL_INTERVAL_SECONDS = float(os.getenv("SUBSCRIPTION_POLL_INTERVAL_SECONDS", "10"))
SUBSCRIPTION_POLL_MAX_ATTEMPTS = int(os.getenv("SUBSCRIPTION_POLL_MAX_ATTEMPTS", "36"))  # 6 minutes
SUBSCRIPTION_QUERY_AFTER_ATTEMPTS = int(os.getenv("SUBSCRIPTION_QUERY_AFTER_ATTEMPTS", "12"))  # ~2 minutes
SUBSCRIPTION_POLL_INITIAL_DELAY_SECONDS = float(os.getenv("SUBSCRIPTION_POLL_INITIAL_DELAY_SECONDS", "3"))
SUBSCRIPTION_SUCCESS_CLOSE_DELAY_SECONDS = float(os.getenv("SUBSCRIPTION_SUCCESS_CLOSE_DELAY_SECONDS", "2"))

# Secure viewer
VIEWER_TIME_UP_GRACE_SECONDS = float(os.getenv("VIEWER_TIME_UP_GRACE_SECONDS", "3"))
DEVTOOLS_POLL_INTERVAL_MS = int(os.getenv("DEVTOOLS_POLL_INTERVAL_MS", "500"))
DEVTOOLS_SIZE_THRESHOLD = int(os.getenv("DEVTOOLS_SIZE_THRESHOLD", "160"))
ENABLE_DEVTOOLS_HEURISTIC = os.getenv("ENABLE_DEVTOOLS_HEURISTIC", "true").lower() == "true"

# Uploads
MAX_ASSESSMENT_FILE_BYTES = int(os.getenv("MAX_ASSESSMENT_FILE_BYTES", str(5 * 1024 * 1024)))


class ContentConfig:
    """Content types and lifecycle rules shared by the backend and client."""

    TOPIC_CONTENT_TYPES = ["video", "notes", "youtube_link"]
    ASSESSMENT_CONTENT_TYPES = ["cats", "assignments", "pastExams"]
    SECURE_IMAGE_TYPES = ["cats", "pastExams", "assignments"]

    # Types that are never behind the paywall
    FREE_CONTENT_TYPES = ["assignments"]

    CONTENT_STATUSES = ["pending", "approved", "rejected", "published", "draft"]
    STUDENT_VISIBLE_STATUSES = ["approved", "published"]

    # Assessments in these states may be streamed to the secure viewer
    SECURE_VIEWABLE_STATUSES = ["approved", "active", "completed", "scheduled", "expired", "published"]

    # Default metadata when an assessment omits them
    DEFAULT_TOTAL_MARKS = {"cats": 30, "pastExams": 100, "assignments": 100}
    DEFAULT_DURATION_MINUTES = {"cats": 60, "pastExams": 180, "assignments": 60}

    SECURE_FILE_CONTENT_TYPES = {
        ".jpg": "image/jpeg",
        ".jpeg": "image/jpeg",
        ".png": "image/png",
        ".gif": "image/gif",
        ".svg": "image/svg+xml",
        ".pdf": "application/pdf",
        ".webp": "image/webp",
    }

    SECURE_RESPONSE_HEADERS = {
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Content-Disposition": "inline",
        "X-Robots-Tag": "noindex, nofollow, nosnippet, noarchive",
    }
