import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from google.cloud import firestore

from receipt_ledger.core.config import settings

# --- AI response cache ---
# Raw model transcriptions keyed by image hash, so re-uploading the same
# photo within the TTL skips the recognition call. Latency only: a miss or
# a cache failure never changes what gets stored.

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FirestoreResponseCache:
    """
    Documents: ``{value, expires_at, created_at}``. ``expires_at`` is also
    suitable as a Firestore TTL policy field so expired documents get purged.
    """

    def __init__(
        self,
        db: firestore.Client,
        collection: str = settings.RESPONSE_CACHE_COLLECTION,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.collection = collection
        self.clock = clock

    def get(self, key: str) -> Optional[bytes]:
        try:
            doc = self.db.collection(self.collection).document(key).get()
            if not doc.exists:
                return None
            data = doc.to_dict() or {}
            expires_at = data.get("expires_at")
            if expires_at is not None and expires_at <= self.clock():
                return None
            value = data.get("value")
            if not value:
                return None
            return value.encode("utf-8") if isinstance(value, str) else bytes(value)
        except Exception as exc:
            logger.warning("response_cache_get_failed key=%s error=%s", key, str(exc))
            return None

    def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        now = self.clock()
        try:
            self.db.collection(self.collection).document(key).set(
                {
                    "value": value.decode("utf-8", errors="replace"),
                    "expires_at": now + ttl,
                    "created_at": now,
                }
            )
        except Exception as exc:
            logger.warning("response_cache_set_failed key=%s error=%s", key, str(exc))
