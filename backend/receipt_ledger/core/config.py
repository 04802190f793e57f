import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """
    Application settings loaded from environment variables (and .env).
    """

    # Google Cloud Config
    GCP_PROJECT_ID: str = os.getenv("GCP_PROJECT_ID", "receipt-ledger")
    GCP_STORAGE_BUCKET: str = os.getenv("GCP_STORAGE_BUCKET", "receipt-ledger-images")
    VERTEX_AI_LOCATION: str = os.getenv(
        "VERTEX_AI_LOCATION", os.getenv("GCP_LOCATION", "asia-northeast1")
    )

    # Vertex AI (Gemini)
    VERTEX_AI_MODEL: str = os.getenv("VERTEX_AI_MODEL", "gemini-2.5-flash")
    VERTEX_AI_RECEIPT_MODEL: str = os.getenv(
        "VERTEX_AI_RECEIPT_MODEL",
        "gemini-2.5-flash-lite",
    )
    AI_TIMEOUT_MS: int = _env_int("AI_TIMEOUT_MS", 30000)
    AI_MAX_OUTPUT_TOKENS: int = _env_int("AI_MAX_OUTPUT_TOKENS", 4096)
    VISION_PREPROCESS_ENABLED: bool = _env_bool("VISION_PREPROCESS_ENABLED", True)
    VISION_MAX_IMAGE_EDGE: int = _env_int("VISION_MAX_IMAGE_EDGE", 1600)
    VISION_JPEG_QUALITY: int = _env_int("VISION_JPEG_QUALITY", 85)
    MAX_IMAGE_BYTES: int = _env_int("MAX_IMAGE_BYTES", 10 * 1024 * 1024)

    # Database
    FIRESTORE_DB: str = os.getenv("FIRESTORE_DB", "(default)")
    RECEIPTS_COLLECTION: str = os.getenv("RECEIPTS_COLLECTION", "receipts")
    EXPENSES_COLLECTION: str = os.getenv("EXPENSES_COLLECTION", "expense_entries")

    # Item ids are "<receipt id prefix>-<8 digit ordinal>" and must fit this width.
    ITEM_ID_MAX_LENGTH: int = _env_int("ITEM_ID_MAX_LENGTH", 36)

    # AI response cache
    RESPONSE_CACHE_ENABLED: bool = _env_bool("RESPONSE_CACHE_ENABLED", True)
    RESPONSE_CACHE_COLLECTION: str = os.getenv("RESPONSE_CACHE_COLLECTION", "ai_response_cache")
    RESPONSE_CACHE_TTL_SECONDS: int = _env_int("RESPONSE_CACHE_TTL_SECONDS", 24 * 60 * 60)

    # Image archive (Cloud Storage)
    IMAGE_ARCHIVE_ENABLED: bool = _env_bool("IMAGE_ARCHIVE_ENABLED", False)

    # Background ingestion
    INGESTION_QUEUE_MAXSIZE: int = _env_int("INGESTION_QUEUE_MAXSIZE", 32)
    INGESTION_WORKERS: int = _env_int("INGESTION_WORKERS", 2)
    INGESTION_MAX_TRACKED_JOBS: int = _env_int("INGESTION_MAX_TRACKED_JOBS", 500)

    # Security
    AUTH_ENABLED: bool = _env_bool("AUTH_ENABLED", True)
    FIREBASE_CREDENTIALS_PATH: str = os.getenv(
        "FIREBASE_CREDENTIALS_PATH", "./firebase-adminsdk.json"
    )

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()


settings = Settings()
