from functools import lru_cache
from typing import Optional

from google.cloud import firestore

from receipt_ledger.core.config import settings
from receipt_ledger.services.aggregation import CategorySummaryService
from receipt_ledger.services.ai_service import GeminiClient
from receipt_ledger.services.categorization import CategoryClassifier
from receipt_ledger.services.extraction import ReceiptExtractor
from receipt_ledger.services.firestore_service import (
    FirestoreExpenseRepository,
    FirestoreReceiptRepository,
    create_client,
)
from receipt_ledger.services.ingestion import ReceiptIngestionService
from receipt_ledger.services.ingestion_queue import IngestionQueue
from receipt_ledger.services.response_cache import FirestoreResponseCache
from receipt_ledger.services.storage_service import ImageArchive

# --- Service wiring ---
# One instance per process, built on first use so importing the app never
# opens a cloud connection. Tests replace these via app.dependency_overrides.


@lru_cache(maxsize=1)
def get_firestore_client() -> firestore.Client:
    return create_client()


@lru_cache(maxsize=1)
def get_receipt_repository() -> FirestoreReceiptRepository:
    return FirestoreReceiptRepository(get_firestore_client())


@lru_cache(maxsize=1)
def get_expense_repository() -> FirestoreExpenseRepository:
    return FirestoreExpenseRepository(get_firestore_client())


@lru_cache(maxsize=1)
def get_response_cache() -> Optional[FirestoreResponseCache]:
    if not settings.RESPONSE_CACHE_ENABLED:
        return None
    return FirestoreResponseCache(get_firestore_client())


@lru_cache(maxsize=1)
def get_gemini_client() -> GeminiClient:
    return GeminiClient()


@lru_cache(maxsize=1)
def get_classifier() -> CategoryClassifier:
    return CategoryClassifier(get_gemini_client())


@lru_cache(maxsize=1)
def get_ingestion_service() -> ReceiptIngestionService:
    return ReceiptIngestionService(
        extractor=ReceiptExtractor(get_gemini_client()),
        classifier=get_classifier(),
        receipts=get_receipt_repository(),
        cache=get_response_cache(),
        image_archive=ImageArchive() if settings.IMAGE_ARCHIVE_ENABLED else None,
    )


@lru_cache(maxsize=1)
def get_ingestion_queue() -> IngestionQueue:
    return IngestionQueue(get_ingestion_service())


@lru_cache(maxsize=1)
def get_summary_service() -> CategorySummaryService:
    return CategorySummaryService(get_receipt_repository(), get_expense_repository())
