"""
Tests for the structured extractor (raw model text -> draft Receipt).
Run:
  cd backend
  python tests/test_extraction.py
"""
import asyncio
from datetime import datetime

import pytest

from fakes import FIXED_NOW, FakeGemini, receipt_json
from receipt_ledger.core.exceptions import ExtractionError
from receipt_ledger.services.extraction import (
    ReceiptExtractor,
    parse_purchase_date,
    strip_code_fence,
)
from receipt_ledger.services.identity import derive_item_id, derive_receipt_id

RECEIPT_ID = derive_receipt_id(b"receipt-photo")


def _extractor(gemini=None):
    return ReceiptExtractor(gemini or FakeGemini(), clock=lambda: FIXED_NOW)


# =====================================================
# Test 1: Code fences
# =====================================================

def test_strip_code_fence_variants():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('Here you go:\n```json\n{"a": 1}\n```\nThanks') == '{"a": 1}'
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'
    print("✅ Test 1: Code fence stripping — PASSED")


# =====================================================
# Test 2: Reported total replaced by item sum
# =====================================================

def test_total_replaced_by_item_sum():
    raw = receipt_json(
        items=[
            {"name": "Bread", "quantity": 1, "price": 500},
            {"name": "Milk", "quantity": 1, "price": 500},
            {"name": "Bus ticket", "quantity": 1, "price": 500},
        ],
        total_amount=2000,
    )
    receipt = _extractor().parse(raw, RECEIPT_ID)

    assert receipt.total_amount == 1500
    assert receipt.item_total() == 1500
    print("✅ Test 2: Total corrected 2000 → 1500 — PASSED")


def test_total_kept_when_items_sum_to_zero():
    raw = receipt_json(items=[{"name": "Free sample", "quantity": 1, "price": 0}], total_amount=800)
    receipt = _extractor().parse(raw, RECEIPT_ID)

    assert receipt.total_amount == 800
    print("✅ Test 3: Reported total kept when item sum is 0 — PASSED")


def test_quantity_multiplies_price():
    raw = receipt_json(items=[{"name": "Eggs", "quantity": 3, "price": 120}], total_amount=0)
    receipt = _extractor().parse(raw, RECEIPT_ID)

    assert receipt.total_amount == 360
    print("✅ Test 4: Quantity × price — PASSED")


# =====================================================
# Test 5: Items: blank names dropped, ids, defaults
# =====================================================

def test_blank_names_dropped_and_ids_assigned():
    raw = receipt_json(
        items=[
            {"name": "Coffee", "quantity": 1, "price": 300},
            {"name": "   ", "quantity": 1, "price": 999},
            {"name": "Sandwich", "quantity": None, "price": 450},
        ],
        total_amount=0,
    )
    receipt = _extractor().parse(raw, RECEIPT_ID)

    assert [item.name for item in receipt.items] == ["Coffee", "Sandwich"]
    assert [item.id for item in receipt.items] == [
        derive_item_id(RECEIPT_ID, 0),
        derive_item_id(RECEIPT_ID, 1),
    ]
    assert receipt.items[1].quantity == 1
    assert all(item.receipt_id == RECEIPT_ID for item in receipt.items)
    assert all(item.category is None for item in receipt.items)
    assert receipt.total_amount == 750
    print("✅ Test 5: Blank items dropped, ids assigned — PASSED")


def test_fenced_payload_with_nulls():
    raw = (
        "```json\n"
        '{"store_name": null, "purchase_date": "2024/02/03", "total_amount": null,'
        ' "tax_amount": null, "payment_method": null, "receipt_number": null,'
        ' "items": null}\n'
        "```"
    )
    receipt = _extractor().parse(raw, RECEIPT_ID)

    assert receipt.id == RECEIPT_ID
    assert receipt.store_name == ""
    assert receipt.items == []
    assert receipt.total_amount == 0
    assert receipt.purchase_date == datetime(2024, 2, 3)
    print("✅ Test 6: Fenced payload with nulls — PASSED")


# =====================================================
# Test 7: Dates
# =====================================================

def test_purchase_date_formats_and_fallback():
    assert parse_purchase_date("2024-01-15 10:30", FIXED_NOW) == datetime(2024, 1, 15, 10, 30)
    assert parse_purchase_date("2024-01-15", FIXED_NOW) == datetime(2024, 1, 15)
    assert parse_purchase_date("2024/01/15 08:05", FIXED_NOW) == datetime(2024, 1, 15, 8, 5)
    assert parse_purchase_date("15 Jan", FIXED_NOW) == FIXED_NOW
    assert parse_purchase_date("", FIXED_NOW) == FIXED_NOW
    print("✅ Test 7: Purchase date parsing — PASSED")


# =====================================================
# Test 8: Malformed answers
# =====================================================

def test_malformed_json_raises_extraction_error():
    extractor = _extractor()
    with pytest.raises(ExtractionError):
        extractor.parse("I could not read this receipt.", RECEIPT_ID)
    with pytest.raises(ExtractionError):
        extractor.parse("[1, 2, 3]", RECEIPT_ID)
    with pytest.raises(ExtractionError):
        extractor.parse('{"items": [{"name": "x", "price": "lots"}]}', RECEIPT_ID)
    print("✅ Test 8: Malformed JSON rejected — PASSED")


# =====================================================
# Test 9: extract() calls the recognizer once
# =====================================================

def test_extract_uses_recognizer():
    gemini = FakeGemini(
        receipt_text=receipt_json(items=[{"name": "Tea", "quantity": 2, "price": 150}])
    )
    receipt = asyncio.run(_extractor(gemini).extract(b"img", RECEIPT_ID, "image/png"))

    assert gemini.recognize_calls == 1
    assert receipt.total_amount == 300
    assert receipt.store_name == "Test Mart"
    print("✅ Test 9: extract() end to end — PASSED")


if __name__ == "__main__":
    print("\n🧪 Running Extraction Tests...\n")
    test_strip_code_fence_variants()
    test_total_replaced_by_item_sum()
    test_total_kept_when_items_sum_to_zero()
    test_quantity_multiplies_price()
    test_blank_names_dropped_and_ids_assigned()
    test_fenced_payload_with_nulls()
    test_purchase_date_formats_and_fallback()
    test_malformed_json_raises_extraction_error()
    test_extract_uses_recognizer()
    print("\n🎉 All extraction tests passed!\n")
