from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


# --- Line Item Models ---

class LineItem(BaseModel):
    """One purchased product on a receipt."""
    id: str                                  # "<receipt id prefix>-<ordinal>"
    receipt_id: str
    name: str
    quantity: int = 1
    price: int = 0                           # integer currency units
    category: Optional[str] = None           # set by the category classifier
    created_at: datetime = Field(default_factory=datetime.now)

    def is_valid(self) -> bool:
        return bool(self.name) and self.quantity > 0 and self.price >= 0

    def subtotal(self) -> int:
        return self.price * self.quantity


# --- Receipt Models ---

class Receipt(BaseModel):
    """
    Canonical record of one purchase, derived from one uploaded image.

    The id is content-derived (see services.identity), so the same photo
    always maps onto the same record.
    """
    id: str
    store_name: str = ""
    purchase_date: datetime
    total_amount: int = 0
    tax_amount: int = 0
    payment_method: str = ""
    receipt_number: str = ""
    category: Optional[str] = None           # receipt-level, usually unset
    image_url: Optional[str] = None          # gs:// URI when archived
    items: List[LineItem] = []
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def is_valid(self) -> bool:
        return bool(self.store_name) and self.total_amount >= 0

    def item_total(self) -> int:
        return sum(item.subtotal() for item in self.items)


# --- Freeform Ledger Models ---

class ExpenseEntryCreate(BaseModel):
    """Request body for a manual ledger entry."""
    date: datetime
    category: str = Field(..., min_length=1, max_length=50)
    amount: int = Field(..., ge=0)
    description: str = ""
    tags: List[str] = []
    receipt_id: Optional[str] = None         # weak reference, no ownership


class ExpenseEntry(BaseModel):
    """A ledger line not necessarily tied to a receipt."""
    id: str
    receipt_id: Optional[str] = None
    date: datetime
    category: str
    amount: int
    description: str = ""
    tags: List[str] = []
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def is_valid(self) -> bool:
        return bool(self.category) and self.amount >= 0


# --- Derived Views ---

class CategorySummary(BaseModel):
    """Per-category count and total. Computed on request, never stored."""
    category: str
    count: int = 0
    total: int = 0
