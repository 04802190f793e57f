"""
Tests for the category classifier and its tolerant answer parser.
Run:
  cd backend
  python tests/test_categorization.py
"""
import asyncio

import pytest

from fakes import FIXED_NOW, FakeGemini, provider_error
from receipt_ledger.core.exceptions import ClassificationError, InvalidInputError
from receipt_ledger.models.category import OTHER_CATEGORY, canonical_category, category_names
from receipt_ledger.models.receipt import LineItem, Receipt
from receipt_ledger.services.categorization import (
    CategoryClassifier,
    assign_categories,
    build_items_prompt,
    parse_categories,
)
from receipt_ledger.services.identity import derive_item_id, derive_receipt_id

RECEIPT_ID = derive_receipt_id(b"categorize-me")


def _receipt(names):
    return Receipt(
        id=RECEIPT_ID,
        store_name="Corner Shop",
        purchase_date=FIXED_NOW,
        items=[
            LineItem(
                id=derive_item_id(RECEIPT_ID, index),
                receipt_id=RECEIPT_ID,
                name=name,
                quantity=1,
                price=100,
            )
            for index, name in enumerate(names)
        ],
    )


# =====================================================
# Test 1: Vocabulary
# =====================================================

def test_vocabulary_contains_other():
    names = category_names()
    assert OTHER_CATEGORY in names
    assert "Food" in names
    assert canonical_category("  food ") == "Food"
    assert canonical_category("daily goods") == "Daily Goods"
    assert canonical_category("Groceries") is None
    print("✅ Test 1: Category vocabulary — PASSED")


# =====================================================
# Test 2: The five answer shapes
# =====================================================

def test_parse_string_array():
    assert parse_categories('["Food", "Daily Goods"]', 2) == ["Food", "Daily Goods"]
    print("✅ Test 2a: String array — PASSED")


def test_parse_object_array():
    raw = '[{"item": "Milk", "category": "food"}, {"item": "Soap", "category": "Daily Goods"}]'
    assert parse_categories(raw, 2) == ["Food", "Daily Goods"]
    print("✅ Test 2b: Object array — PASSED")


def test_parse_numbered_object():
    assert parse_categories('{"1": "Food", "2": "Transport"}', 2) == ["Food", "Transport"]
    # Missing ordinals come back empty so the caller can fall back per item.
    assert parse_categories('{"1": "Food", "3": "Transport"}', 3) == ["Food", "", "Transport"]
    print("✅ Test 2c: Numbered object — PASSED")


def test_parse_categories_field():
    raw = '```json\n{"categories": ["Medical", "Utilities"]}\n```'
    assert parse_categories(raw, 2) == ["Medical", "Utilities"]
    print("✅ Test 2d: categories field — PASSED")


def test_parse_numbered_lines():
    raw = "1. Food\n2. Milk -> Daily Goods\n3) Transport"
    assert parse_categories(raw, 3) == ["Food", "Daily Goods", "Transport"]

    bare = "Food\nEntertainment"
    assert parse_categories(bare, 2) == ["Food", "Entertainment"]

    # One bare line per item: placed by position, unknown names kept.
    unknown = "Groceries\nHousehold\nOther"
    assert parse_categories(unknown, 3) == ["Groceries", "Household", "Other"]
    assert parse_categories("- food\n- Transport", 2) == ["Food", "Transport"]
    assert parse_categories("I cannot tell.", 1) is None
    print("✅ Test 2e: Numbered lines — PASSED")


def test_numbered_lines_with_bracketed_aside():
    raw = "1. Food\n2. Daily Goods\n3. Transport\n(note: [2] could also be Other)"
    assert parse_categories(raw, 3) == ["Food", "Daily Goods", "Transport"]

    aside = 'Here you go {"draft": true}\n1. Medical\n2. Utilities'
    assert parse_categories(aside, 2) == ["Medical", "Utilities"]
    print("✅ Test 2f: Numbered lines with bracketed aside — PASSED")


def test_json_embedded_in_prose():
    raw = 'Sure! Here are the categories: ["Food", "Other"] Hope this helps.'
    assert parse_categories(raw, 2) == ["Food", "Other"]
    print("✅ Test 3: JSON embedded in prose — PASSED")


# =====================================================
# Test 4: Unparseable answers
# =====================================================

def test_unparseable_answers_return_none():
    assert parse_categories("", 2) is None
    assert parse_categories("I am not sure what these items are.", 2) is None
    assert parse_categories('{"answer": "Food"}', 1) is None
    assert parse_categories('["", ""]', 2) is None
    print("✅ Test 4: Unparseable answers — PASSED")


def test_unknown_category_kept_verbatim():
    assert parse_categories('["Pets"]', 1) == ["Pets"]
    print("✅ Test 5: Unknown category kept verbatim — PASSED")


# =====================================================
# Test 6: Assignment and fallback
# =====================================================

def test_assign_categories_fills_other():
    receipt = _receipt(["Milk", "Soap", "Mystery"])
    result = assign_categories(receipt, ["Food", ""])

    assert [item.category for item in result.items] == ["Food", OTHER_CATEGORY, OTHER_CATEGORY]
    # Input receipt is untouched.
    assert all(item.category is None for item in receipt.items)
    print("✅ Test 6: Missing categories → Other — PASSED")


def test_prompt_lists_items_in_order():
    prompt = build_items_prompt(_receipt(["Milk", "Soap"]))
    assert "Corner Shop" in prompt
    assert "1. Milk" in prompt
    assert "2. Soap" in prompt
    assert "exactly 2" in prompt
    print("✅ Test 7: Items prompt — PASSED")


# =====================================================
# Test 8: Classifier
# =====================================================

def test_classify_items_single_call():
    gemini = FakeGemini(category_text='["Food", "Daily Goods", "Transport"]')
    classifier = CategoryClassifier(gemini)

    result = asyncio.run(classifier.classify_items(_receipt(["Bread", "Soap", "Bus"])))

    assert gemini.categorize_calls == 1
    assert [item.category for item in result.items] == ["Food", "Daily Goods", "Transport"]
    print("✅ Test 8: One categorize call per receipt — PASSED")


def test_classify_items_short_answer_pads_with_other():
    gemini = FakeGemini(category_text='["Food"]')
    result = asyncio.run(CategoryClassifier(gemini).classify_items(_receipt(["Bread", "Soap"])))

    assert [item.category for item in result.items] == ["Food", OTHER_CATEGORY]
    print("✅ Test 9: Short answer padded with Other — PASSED")


def test_classify_items_without_items_skips_model():
    gemini = FakeGemini()
    result = asyncio.run(CategoryClassifier(gemini).classify_items(_receipt([])))

    assert result.items == []
    assert gemini.categorize_calls == 0
    print("✅ Test 10: No items, no call — PASSED")


def test_classify_items_failures_raise_classification_error():
    gemini = FakeGemini(category_text="No idea, sorry.")
    with pytest.raises(ClassificationError):
        asyncio.run(CategoryClassifier(gemini).classify_items(_receipt(["Bread"])))

    gemini = FakeGemini()
    gemini.categorize_error = provider_error()
    with pytest.raises(ClassificationError):
        asyncio.run(CategoryClassifier(gemini).classify_items(_receipt(["Bread"])))
    print("✅ Test 11: Classifier failures — PASSED")


def test_categorize_text():
    gemini = FakeGemini(category_text='{"1": "Food", "2": ""}')
    categories, raw = asyncio.run(
        CategoryClassifier(gemini).categorize_text("Milk 200\nBatteries 400")
    )

    assert categories == ["Food", OTHER_CATEGORY]
    assert raw == '{"1": "Food", "2": ""}'

    with pytest.raises(InvalidInputError):
        asyncio.run(CategoryClassifier(gemini).categorize_text("   "))
    print("✅ Test 12: Freeform categorize — PASSED")


if __name__ == "__main__":
    print("\n🧪 Running Categorization Tests...\n")
    test_vocabulary_contains_other()
    test_parse_string_array()
    test_parse_object_array()
    test_parse_numbered_object()
    test_parse_categories_field()
    test_parse_numbered_lines()
    test_numbered_lines_with_bracketed_aside()
    test_json_embedded_in_prose()
    test_unparseable_answers_return_none()
    test_unknown_category_kept_verbatim()
    test_assign_categories_fills_other()
    test_prompt_lists_items_in_order()
    test_classify_items_single_call()
    test_classify_items_short_answer_pads_with_other()
    test_classify_items_without_items_skips_model()
    test_classify_items_failures_raise_classification_error()
    test_categorize_text()
    print("\n🎉 All categorization tests passed!\n")
