"""
Tests for the ingestion coordinator (image bytes -> stored Receipt).
Run:
  cd backend
  python tests/test_ingestion.py
"""
import asyncio
from datetime import timedelta

import pytest

from fakes import (
    FIXED_NOW,
    FakeGemini,
    InMemoryReceiptStore,
    InMemoryResponseCache,
    RaceReceiptStore,
    build_service,
    provider_error,
    receipt_json,
)
from receipt_ledger.core.exceptions import AIProviderError, ExtractionError, InvalidInputError
from receipt_ledger.models.category import OTHER_CATEGORY
from receipt_ledger.models.receipt import Receipt
from receipt_ledger.services.identity import derive_receipt_id, response_cache_key

IMAGE = b"\x89PNG fake receipt photo"

THREE_ITEMS = receipt_json(
    items=[
        {"name": "Rice balls", "quantity": 1, "price": 500},
        {"name": "Dish soap", "quantity": 1, "price": 500},
        {"name": "Train fare", "quantity": 1, "price": 500},
    ],
    total_amount=2000,
)


def _gemini():
    return FakeGemini(
        receipt_text=THREE_ITEMS,
        category_text='["Food", "Daily Goods", "Transport"]',
    )


# =====================================================
# Test 1: Full flow: total corrected, items categorized, stored
# =====================================================

def test_ingest_stores_reconciled_receipt():
    gemini = _gemini()
    store = InMemoryReceiptStore()
    service = build_service(gemini, receipts=store)

    outcome = asyncio.run(service.ingest(IMAGE, "image/png"))

    receipt = outcome.receipt
    assert outcome.created is True
    assert receipt.id == derive_receipt_id(IMAGE)
    assert receipt.total_amount == 1500
    assert [item.category for item in receipt.items] == ["Food", "Daily Goods", "Transport"]
    assert store.receipts[receipt.id] == receipt
    assert gemini.recognize_calls == 1
    assert gemini.categorize_calls == 1
    print("✅ Test 1: Full ingestion flow — PASSED")


# =====================================================
# Test 2: Idempotence: same bytes, one record
# =====================================================

def test_ingest_same_image_twice_is_idempotent():
    gemini = _gemini()
    store = InMemoryReceiptStore()
    service = build_service(gemini, receipts=store)

    first = asyncio.run(service.ingest(IMAGE))
    second = asyncio.run(service.ingest(IMAGE))

    assert first.created is True
    assert second.created is False
    assert second.receipt == first.receipt
    assert len(store.receipts) == 1
    assert store.create_calls == 1
    # Already-ingested images are not re-categorized.
    assert gemini.categorize_calls == 1
    print("✅ Test 2: Idempotent re-upload — PASSED")


def test_process_receipt_image_returns_receipt():
    service = build_service(_gemini())
    receipt = asyncio.run(service.process_receipt_image(IMAGE))
    assert isinstance(receipt, Receipt)
    assert receipt.total_amount == 1500
    print("✅ Test 3: process_receipt_image — PASSED")


# =====================================================
# Test 4: Response cache
# =====================================================

def test_cache_hit_skips_recognition():
    gemini = _gemini()
    cache = InMemoryResponseCache()
    cache.values[response_cache_key(IMAGE)] = THREE_ITEMS.encode("utf-8")
    service = build_service(gemini, cache=cache)

    outcome = asyncio.run(service.ingest(IMAGE))

    assert outcome.cache_hit is True
    assert outcome.created is True
    assert gemini.recognize_calls == 0
    assert outcome.receipt.total_amount == 1500
    print("✅ Test 4: Cache hit skips recognition — PASSED")


def test_successful_transcription_is_cached_with_ttl():
    cache = InMemoryResponseCache()
    service = build_service(_gemini(), cache=cache)
    service.cache_ttl = timedelta(hours=24)

    asyncio.run(service.ingest(IMAGE))

    key = response_cache_key(IMAGE)
    assert cache.values[key] == THREE_ITEMS.encode("utf-8")
    assert cache.ttls[key] == timedelta(hours=24)
    print("✅ Test 5: Transcription cached — PASSED")


def test_second_upload_uses_cache():
    gemini = _gemini()
    service = build_service(gemini, cache=InMemoryResponseCache())

    asyncio.run(service.ingest(IMAGE))
    second = asyncio.run(service.ingest(IMAGE))

    assert second.created is False
    assert second.cache_hit is True
    assert gemini.recognize_calls == 1
    print("✅ Test 6: Second upload served from cache — PASSED")


# =====================================================
# Test 7: Classification failure → "Other"
# =====================================================

def test_classifier_failure_falls_back_to_other():
    gemini = _gemini()
    gemini.categorize_error = provider_error("categorize timed out")
    store = InMemoryReceiptStore()
    service = build_service(gemini, receipts=store)

    outcome = asyncio.run(service.ingest(IMAGE))

    assert outcome.created is True
    assert [item.category for item in outcome.receipt.items] == [OTHER_CATEGORY] * 3
    assert outcome.receipt.id in store.receipts
    print("✅ Test 7: Classifier failure → Other — PASSED")


def test_unparseable_category_answer_falls_back_to_other():
    gemini = _gemini()
    gemini.category_text = "Sorry, I cannot help with that."

    outcome = asyncio.run(build_service(gemini).ingest(IMAGE))

    assert [item.category for item in outcome.receipt.items] == [OTHER_CATEGORY] * 3
    print("✅ Test 8: Unparseable categories → Other — PASSED")


# =====================================================
# Test 9: Duplicate-key race resolves to stored record
# =====================================================

def test_duplicate_race_returns_stored_receipt():
    receipt_id = derive_receipt_id(IMAGE)
    winner = Receipt(id=receipt_id, store_name="Stored first", purchase_date=FIXED_NOW)
    store = RaceReceiptStore(winner)

    outcome = asyncio.run(build_service(_gemini(), receipts=store).ingest(IMAGE))

    assert outcome.created is False
    assert outcome.receipt.store_name == "Stored first"
    assert len(store.receipts) == 1
    print("✅ Test 9: Duplicate race resolved — PASSED")


# =====================================================
# Test 10: Failures propagate, nothing stored or cached
# =====================================================

def test_empty_image_rejected():
    with pytest.raises(InvalidInputError):
        asyncio.run(build_service(_gemini()).ingest(b""))
    print("✅ Test 10: Empty image rejected — PASSED")


def test_malformed_recognition_stores_nothing():
    gemini = _gemini()
    gemini.receipt_text = "this is not json"
    store = InMemoryReceiptStore()
    cache = InMemoryResponseCache()
    service = build_service(gemini, receipts=store, cache=cache)

    with pytest.raises(ExtractionError):
        asyncio.run(service.ingest(IMAGE))

    assert store.receipts == {}
    assert cache.values == {}
    print("✅ Test 11: Malformed answer — nothing stored or cached — PASSED")


def test_recognition_failure_propagates():
    gemini = _gemini()
    gemini.recognize_error = AIProviderError("timeout")
    store = InMemoryReceiptStore()

    with pytest.raises(AIProviderError):
        asyncio.run(build_service(gemini, receipts=store).ingest(IMAGE))

    assert store.create_calls == 0
    print("✅ Test 12: Recognition failure propagates — PASSED")


if __name__ == "__main__":
    print("\n🧪 Running Ingestion Tests...\n")
    test_ingest_stores_reconciled_receipt()
    test_ingest_same_image_twice_is_idempotent()
    test_process_receipt_image_returns_receipt()
    test_cache_hit_skips_recognition()
    test_successful_transcription_is_cached_with_ttl()
    test_second_upload_uses_cache()
    test_classifier_failure_falls_back_to_other()
    test_unparseable_category_answer_falls_back_to_other()
    test_duplicate_race_returns_stored_receipt()
    test_empty_image_rejected()
    test_malformed_recognition_stores_nothing()
    test_recognition_failure_propagates()
    print("\n🎉 All ingestion tests passed!\n")
