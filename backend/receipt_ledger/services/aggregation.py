import asyncio
from typing import Iterable, Protocol

from receipt_ledger.models.category import OTHER_CATEGORY
from receipt_ledger.models.receipt import CategorySummary, ExpenseEntry, Receipt


class _ListsAll(Protocol):
    def find_all(self, limit: int = 0, offset: int = 0) -> list:
        ...


def summarize_by_category(
    receipts: Iterable[Receipt],
    expenses: Iterable[ExpenseEntry],
) -> list[CategorySummary]:
    """
    Merge line items and ledger entries into per-category count/total.

    Receipt items are counted one by one (uncategorized items land in
    "Other"); ledger entries without a category are skipped. Output order
    follows first appearance; callers wanting a stable order sort it.
    """
    summary: dict[str, CategorySummary] = {}

    def bucket(category: str) -> CategorySummary:
        if category not in summary:
            summary[category] = CategorySummary(category=category)
        return summary[category]

    for receipt in receipts:
        for item in receipt.items:
            row = bucket(item.category or OTHER_CATEGORY)
            row.count += 1
            row.total += item.price * item.quantity

    for expense in expenses:
        if not expense.category:
            continue
        row = bucket(expense.category)
        row.count += 1
        row.total += expense.amount

    return list(summary.values())


class CategorySummaryService:
    """Full-scan aggregation over the receipt and expense stores."""

    def __init__(self, receipts: _ListsAll, expenses: _ListsAll):
        self.receipts = receipts
        self.expenses = expenses

    async def category_summary(self) -> list[CategorySummary]:
        receipts, expenses = await asyncio.gather(
            asyncio.to_thread(self.receipts.find_all, 0, 0),
            asyncio.to_thread(self.expenses.find_all, 0, 0),
        )
        return summarize_by_category(receipts, expenses)
