import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./docseal.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "docseal")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
MINIO_REGION = os.getenv("MINIO_REGION", "us-east-1")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN")
APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
FILE_URL_TTL_SECONDS = int(os.getenv("FILE_URL_TTL_SECONDS", "3600"))
SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", str(60 * 60 * 24 * 7)))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
