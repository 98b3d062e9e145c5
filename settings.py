"""
Runtime configuration for the Volleyball Team Manager API.

Values come from the environment (optionally a local .env file).
"""
import os

from dotenv import load_dotenv

_base_dir = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(_base_dir, ".env"))

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "volleyball_app")

JWT_SECRET = os.getenv("JWT_SECRET", "volleyball_dev_secret_change_me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_DAYS = int(os.getenv("JWT_EXPIRY_DAYS", "30"))

COACH_REGISTRATION_PASSWORD = os.getenv("COACH_REGISTRATION_PASSWORD", "")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

ENABLE_BACKGROUND_JOBS = os.getenv("ENABLE_BACKGROUND_JOBS", "true").lower() in ("1", "true", "yes")

# Poll intervals in seconds
NOTIFICATION_QUEUE_INTERVAL = int(os.getenv("NOTIFICATION_QUEUE_INTERVAL", str(2 * 60)))
NOTIFICATION_CLEANUP_INTERVAL = int(os.getenv("NOTIFICATION_CLEANUP_INTERVAL", str(60 * 60)))
VOTING_DEADLINE_INTERVAL = int(os.getenv("VOTING_DEADLINE_INTERVAL", str(15 * 60)))
ATTENDANCE_INTERVAL = int(os.getenv("ATTENDANCE_INTERVAL", str(24 * 60 * 60)))
