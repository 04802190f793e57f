import json
import logging
import re
from datetime import datetime
from typing import Any, Callable, Protocol

from pydantic import BaseModel, ValidationError, field_validator

from receipt_ledger.core.config import settings
from receipt_ledger.core.exceptions import ExtractionError
from receipt_ledger.models.receipt import LineItem, Receipt
from receipt_ledger.services.identity import derive_item_id

# --- Structured Extractor ---
# Raw model text -> Receipt. The model's own total is advisory: whenever the
# line items add up to something positive, that sum becomes the total.

logger = logging.getLogger(__name__)

RECEIPT_DATE_FORMATS = (
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
)

_FENCE_OPEN = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n?")


class ReceiptRecognizer(Protocol):
    async def recognize_receipt(self, image_bytes: bytes, mime_type: str | None = None) -> str:
        ...


def strip_code_fence(text: str) -> str:
    """
    Drop a leading ```lang fence (and anything before it) plus its closing
    fence. Unfenced text passes through, trimmed.
    """
    match = _FENCE_OPEN.search(text)
    if match:
        text = text[match.end():]
        closing = text.find("```")
        if closing != -1:
            text = text[:closing]
    return text.strip()


def parse_purchase_date(value: str, now: datetime) -> datetime:
    candidate = (value or "").strip()
    for fmt in RECEIPT_DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return now


class _ItemPayload(BaseModel):
    name: str = ""
    quantity: int = 1
    price: int = 0

    @field_validator("name", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, value: Any) -> Any:
        return 1 if value is None else value

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, value: Any) -> Any:
        return 0 if value is None else value


class _ReceiptPayload(BaseModel):
    store_name: str = ""
    purchase_date: str = ""
    total_amount: int = 0
    tax_amount: int = 0
    payment_method: str = ""
    receipt_number: str = ""
    items: list[_ItemPayload] = []

    @field_validator(
        "store_name", "purchase_date", "payment_method", "receipt_number", mode="before"
    )
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("total_amount", "tax_amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> Any:
        return [] if value is None else value


def decode_receipt_payload(raw_text: str) -> _ReceiptPayload:
    cleaned = strip_code_fence(raw_text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Receipt response is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ExtractionError("Receipt response must be a JSON object.")

    try:
        return _ReceiptPayload.model_validate(payload)
    except ValidationError as exc:
        raise ExtractionError(f"Receipt response has invalid fields: {exc}") from exc


class ReceiptExtractor:
    """
    Calls the recognition capability and turns its answer into a draft
    Receipt (items not yet categorized).
    """

    def __init__(
        self,
        recognizer: ReceiptRecognizer,
        item_id_max_length: int = settings.ITEM_ID_MAX_LENGTH,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.recognizer = recognizer
        self.item_id_max_length = item_id_max_length
        self.clock = clock

    async def recognize(self, image_bytes: bytes, mime_type: str | None = None) -> str:
        return await self.recognizer.recognize_receipt(image_bytes, mime_type)

    async def extract(
        self,
        image_bytes: bytes,
        receipt_id: str,
        mime_type: str | None = None,
    ) -> Receipt:
        raw_text = await self.recognize(image_bytes, mime_type)
        return self.parse(raw_text, receipt_id)

    def parse(self, raw_text: str, receipt_id: str) -> Receipt:
        """Build a draft Receipt from raw model text. Raises ExtractionError."""
        payload = decode_receipt_payload(raw_text)
        now = self.clock()

        # Blank names are noise lines ("change due" and the like).
        kept_items = [item for item in payload.items if item.name]
        dropped = len(payload.items) - len(kept_items)
        if dropped:
            logger.info(
                "receipt_items_dropped receipt_id=%s dropped=%d", receipt_id, dropped
            )

        total_amount = payload.total_amount
        calculated_total = sum(item.price * item.quantity for item in kept_items)
        if calculated_total > 0:
            if calculated_total != total_amount:
                logger.info(
                    "receipt_total_corrected receipt_id=%s reported=%d calculated=%d",
                    receipt_id,
                    total_amount,
                    calculated_total,
                )
            total_amount = calculated_total

        items = [
            LineItem(
                id=derive_item_id(receipt_id, index, self.item_id_max_length),
                receipt_id=receipt_id,
                name=item.name,
                quantity=item.quantity,
                price=item.price,
                created_at=now,
            )
            for index, item in enumerate(kept_items)
        ]

        return Receipt(
            id=receipt_id,
            store_name=payload.store_name,
            purchase_date=parse_purchase_date(payload.purchase_date, now),
            total_amount=total_amount,
            tax_amount=payload.tax_amount,
            payment_method=payload.payment_method,
            receipt_number=payload.receipt_number,
            items=items,
            created_at=now,
            updated_at=now,
        )
