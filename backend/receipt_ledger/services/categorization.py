import json
import logging
import re
from typing import Any, Callable, Optional, Protocol

from receipt_ledger.core.exceptions import AIProviderError, ClassificationError, InvalidInputError
from receipt_ledger.models.category import OTHER_CATEGORY, canonical_category
from receipt_ledger.models.receipt import Receipt
from receipt_ledger.services.extraction import strip_code_fence
from receipt_ledger.services.prompts import CATEGORIZE_ITEMS_TEMPLATE

# --- Category Classifier ---
#
# One model call per receipt, whatever the item count. The answer is parsed
# by a fixed chain of parsers; the first one that yields categories wins:
#   1. ["Food", "Daily Goods", ...]
#   2. [{"item": ..., "category": ...}, ...]
#   3. {"1": "Food", "2": ...}
#   4. {"categories": [...]}
#   5. numbered lines ("1. Food")
# Items the answer does not cover fall back to "Other".

logger = logging.getLogger(__name__)

_ORDINAL_LINE = re.compile(r"^\s*(\d+)\s*[.):]\s*(.*)$")
_LIST_MARKER = re.compile(r"^\s*(?:[-*•]\s+)?")
_LINE_SEPARATOR = re.compile(r"\s*(?::|->|→|=|\s-\s)\s*")
_LABEL_MAX_LENGTH = 50


class Categorizer(Protocol):
    async def categorize(self, prompt_text: str) -> str:
        ...


def _load_json(text: str) -> Any:
    """Parse JSON, retrying on the outermost [...] or {...} slice of the text."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for opener, closer in (("[", "]"), ("{", "}")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start >= 0 and end > start:
            try:
                return json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                continue
    return None


def _clean(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().strip("\"'").strip()


def parse_string_array(payload: Any, item_count: Optional[int]) -> Optional[list[str]]:
    if not isinstance(payload, list) or not payload:
        return None
    if not all(isinstance(value, str) for value in payload):
        return None
    return [_clean(value) for value in payload]


def parse_object_array(payload: Any, item_count: Optional[int]) -> Optional[list[str]]:
    if not isinstance(payload, list) or not payload:
        return None
    if not all(isinstance(value, dict) and "category" in value for value in payload):
        return None
    return [_clean(value.get("category")) for value in payload]


def parse_numbered_object(payload: Any, item_count: Optional[int]) -> Optional[list[str]]:
    if not isinstance(payload, dict) or "1" not in payload:
        return None
    categories: list[str] = []
    if item_count is None:
        position = 1
        while str(position) in payload:
            categories.append(_clean(payload[str(position)]))
            position += 1
    else:
        for position in range(1, item_count + 1):
            categories.append(_clean(payload.get(str(position))))
    return categories


def parse_categories_field(payload: Any, item_count: Optional[int]) -> Optional[list[str]]:
    if not isinstance(payload, dict):
        return None
    values = payload.get("categories")
    if not isinstance(values, list) or not values:
        return None
    return [_clean(value) for value in values]


def _line_category(rest: str) -> str:
    # "Milk -> Food" / "Milk: Food" keep the trailing vocabulary name
    cleaned = _clean(rest)
    if canonical_category(cleaned):
        return cleaned
    tail = _clean(_LINE_SEPARATOR.split(cleaned)[-1])
    return tail if canonical_category(tail) else cleaned


def _looks_like_label(line: str) -> bool:
    # Sentences ("Sorry, I can't help.") are prose, not category labels.
    return 0 < len(line) <= _LABEL_MAX_LENGTH and line[-1] not in ".!?"


def parse_numbered_lines(text: str, item_count: Optional[int]) -> Optional[list[str]]:
    """
    Freeform fallback. Lines carrying an ordinal ("2. Food") are placed by
    that ordinal. Without ordinals, short label-like lines are taken by
    position when there is one per item, or when every line is a vocabulary
    name.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return None

    numbered: dict[int, str] = {}
    for line in lines:
        match = _ORDINAL_LINE.match(line)
        if match:
            numbered.setdefault(int(match.group(1)), _line_category(match.group(2)))

    if numbered:
        size = max(numbered) if item_count is None else item_count
        return [numbered.get(position, "") for position in range(1, size + 1)]

    bare = [_clean(_LIST_MARKER.sub("", line)) for line in lines]
    if (
        item_count is not None
        and len(bare) == item_count
        and all(_looks_like_label(line) for line in bare)
    ):
        return bare
    if all(canonical_category(line) for line in bare):
        return bare
    return None


JSON_PARSERS: tuple[Callable[[Any, Optional[int]], Optional[list[str]]], ...] = (
    parse_string_array,
    parse_object_array,
    parse_numbered_object,
    parse_categories_field,
)


def _is_json_document(text: str) -> bool:
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return False
    return True


def parse_categories(raw_text: str, item_count: Optional[int] = None) -> Optional[list[str]]:
    """
    Run the parser chain over a model answer. Returns None when no parser
    yields at least one non-empty category.
    """
    text = strip_code_fence(raw_text or "")
    if not text:
        return None

    payload = _load_json(text)
    if payload is not None:
        for parser in JSON_PARSERS:
            categories = parser(payload, item_count)
            if categories and any(categories):
                return [canonical_category(value) or value for value in categories]
        # A whole JSON answer of an unknown shape is not a line-based answer.
        if _is_json_document(text):
            return None

    categories = parse_numbered_lines(text, item_count)
    if categories and any(categories):
        return [canonical_category(value) or value for value in categories]
    return None


def assign_categories(receipt: Receipt, categories: list[str]) -> Receipt:
    """Copy of ``receipt`` with one category per item, "Other" where missing."""
    items = []
    for index, item in enumerate(receipt.items):
        category = categories[index] if index < len(categories) else ""
        items.append(item.model_copy(update={"category": category or OTHER_CATEGORY}))
    return receipt.model_copy(update={"items": items})


def build_items_prompt(receipt: Receipt, template: str = CATEGORIZE_ITEMS_TEMPLATE) -> str:
    numbered_items = "\n".join(
        f"{index}. {item.name}" for index, item in enumerate(receipt.items, start=1)
    )
    return template.format(
        store_name=receipt.store_name or "(unknown)",
        numbered_items=numbered_items,
        item_count=len(receipt.items),
    )


class CategoryClassifier:
    """Maps every line item of a receipt onto the category vocabulary."""

    def __init__(self, categorizer: Categorizer, prompt_template: str = CATEGORIZE_ITEMS_TEMPLATE):
        self.categorizer = categorizer
        self.prompt_template = prompt_template

    async def classify_items(self, receipt: Receipt) -> Receipt:
        """
        Return a copy of ``receipt`` with ``item.category`` set on every item.

        Raises ClassificationError when the provider fails or no parser
        understands the answer; callers recover with assign_categories(receipt, []).
        """
        if not receipt.items:
            return receipt

        prompt = build_items_prompt(receipt, self.prompt_template)
        try:
            raw_text = await self.categorizer.categorize(prompt)
        except AIProviderError as exc:
            raise ClassificationError(str(exc)) from exc

        categories = parse_categories(raw_text, item_count=len(receipt.items))
        if categories is None:
            raise ClassificationError(
                f"Unrecognized categorization response: {raw_text[:200]!r}"
            )

        if len(categories) != len(receipt.items):
            logger.warning(
                "receipt_category_count_mismatch receipt_id=%s items=%d categories=%d",
                receipt.id,
                len(receipt.items),
                len(categories),
            )
        return assign_categories(receipt, categories)

    async def categorize_text(self, receipt_info: str) -> tuple[list[str], str]:
        """
        Classify a freeform receipt description. Returns (categories, raw answer).
        """
        if not receipt_info or not receipt_info.strip():
            raise InvalidInputError("receipt_info is required.")

        try:
            raw_text = await self.categorizer.categorize(receipt_info.strip())
        except AIProviderError as exc:
            raise ClassificationError(str(exc)) from exc

        categories = parse_categories(raw_text)
        if categories is None:
            raise ClassificationError(
                f"Unrecognized categorization response: {raw_text[:200]!r}"
            )
        return [category or OTHER_CATEGORY for category in categories], raw_text
