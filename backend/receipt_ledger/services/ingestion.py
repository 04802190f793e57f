import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol

from receipt_ledger.core.config import settings
from receipt_ledger.core.exceptions import (
    ClassificationError,
    DuplicateReceiptError,
    InvalidInputError,
    PersistenceError,
)
from receipt_ledger.models.receipt import Receipt
from receipt_ledger.services.categorization import CategoryClassifier, assign_categories
from receipt_ledger.services.extraction import ReceiptExtractor
from receipt_ledger.services.identity import derive_receipt_id, response_cache_key

logger = logging.getLogger(__name__)


class ResponseCache(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        ...


class ReceiptStore(Protocol):
    def create(self, receipt: Receipt) -> Receipt:
        ...

    def find_by_id(self, receipt_id: str) -> Optional[Receipt]:
        ...


class ImageArchiver(Protocol):
    def archive(self, receipt_id: str, image_bytes: bytes, content_type: str | None) -> str:
        ...


@dataclass
class IngestionOutcome:
    receipt: Receipt
    created: bool                            # False when the image was already ingested
    cache_hit: bool = False


class ReceiptIngestionService:
    """
    Image bytes -> stored Receipt, at most one record per distinct image.

    Flow:
    1. Derive the receipt id from the bytes
    2. Reuse a cached transcription, or call the recognition model
    3. Return the stored receipt if this id was already ingested
    4. Parse the draft, classify its items (failure -> "Other" everywhere)
    5. Persist; a duplicate-key race resolves to the stored receipt
    """

    def __init__(
        self,
        extractor: ReceiptExtractor,
        classifier: CategoryClassifier,
        receipts: ReceiptStore,
        cache: Optional[ResponseCache] = None,
        image_archive: Optional[ImageArchiver] = None,
        cache_ttl: timedelta = timedelta(seconds=settings.RESPONSE_CACHE_TTL_SECONDS),
    ):
        self.extractor = extractor
        self.classifier = classifier
        self.receipts = receipts
        self.cache = cache
        self.image_archive = image_archive
        self.cache_ttl = cache_ttl

    async def process_receipt_image(self, image_bytes: bytes, mime_type: str | None = None) -> Receipt:
        outcome = await self.ingest(image_bytes, mime_type)
        return outcome.receipt

    async def ingest(self, image_bytes: bytes, mime_type: str | None = None) -> IngestionOutcome:
        if not image_bytes:
            raise InvalidInputError("Image data is empty.")

        started = time.perf_counter()
        receipt_id = derive_receipt_id(image_bytes)
        cache_key = response_cache_key(image_bytes)

        raw_text, cache_hit = await self._transcribe(image_bytes, mime_type, cache_key)

        existing = await asyncio.to_thread(self.receipts.find_by_id, receipt_id)
        if existing is not None:
            if not cache_hit:
                await self._remember(cache_key, raw_text)
            logger.info(
                "receipt_already_ingested receipt_id=%s cache_hit=%s", receipt_id, cache_hit
            )
            return IngestionOutcome(receipt=existing, created=False, cache_hit=cache_hit)

        draft = self.extractor.parse(raw_text, receipt_id)
        if not cache_hit:
            await self._remember(cache_key, raw_text)

        try:
            receipt = await self.classifier.classify_items(draft)
        except ClassificationError as exc:
            logger.warning(
                "receipt_classification_failed receipt_id=%s error=%s", receipt_id, str(exc)
            )
            receipt = assign_categories(draft, [])

        if self.image_archive is not None:
            receipt = await self._archive(receipt, image_bytes, mime_type)

        try:
            await asyncio.to_thread(self.receipts.create, receipt)
        except DuplicateReceiptError:
            stored = await asyncio.to_thread(self.receipts.find_by_id, receipt_id)
            if stored is None:
                raise PersistenceError(
                    f"Receipt '{receipt_id}' reported as existing but could not be loaded."
                )
            logger.info("receipt_duplicate_resolved receipt_id=%s", receipt_id)
            return IngestionOutcome(receipt=stored, created=False, cache_hit=cache_hit)

        logger.info(
            "receipt_ingested receipt_id=%s items=%d total=%d cache_hit=%s elapsed_ms=%.2f",
            receipt.id,
            len(receipt.items),
            receipt.total_amount,
            cache_hit,
            (time.perf_counter() - started) * 1000,
        )
        return IngestionOutcome(receipt=receipt, created=True, cache_hit=cache_hit)

    async def _transcribe(
        self, image_bytes: bytes, mime_type: str | None, cache_key: str
    ) -> tuple[str, bool]:
        if self.cache is not None:
            cached = await asyncio.to_thread(self.cache.get, cache_key)
            if cached:
                logger.info("response_cache_hit key=%s", cache_key)
                return cached.decode("utf-8", errors="replace"), True

        raw_text = await self.extractor.recognize(image_bytes, mime_type)
        return raw_text, False

    async def _remember(self, cache_key: str, raw_text: str) -> None:
        # Only transcriptions that decoded (or belong to a stored receipt) get cached.
        if self.cache is None:
            return
        await asyncio.to_thread(
            self.cache.set, cache_key, raw_text.encode("utf-8"), self.cache_ttl
        )

    async def _archive(self, receipt: Receipt, image_bytes: bytes, mime_type: str | None) -> Receipt:
        try:
            image_url = await asyncio.to_thread(
                self.image_archive.archive, receipt.id, image_bytes, mime_type
            )
        except Exception as exc:
            logger.warning("receipt_image_archive_failed receipt_id=%s error=%s", receipt.id, str(exc))
            return receipt
        return receipt.model_copy(update={"image_url": image_url})
