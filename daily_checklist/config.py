# file: config.py

import os
from dotenv import load_dotenv

load_dotenv()

DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "daily_checklist")

# DATABASE_URL wins when set, otherwise it is assembled from the DB_* parts.
DATABASE_URL = os.getenv("DATABASE_URL") or (
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "43200"))

FCM_PROJECT_ID = os.getenv("FCM_PROJECT_ID", "daily-checklist-student")
FCM_CREDENTIALS_PATH = os.getenv("FCM_CREDENTIALS_PATH", "serviceAccountKey.json")
FCM_TIMEOUT_SECONDS = float(os.getenv("FCM_TIMEOUT_SECONDS", "10"))

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
