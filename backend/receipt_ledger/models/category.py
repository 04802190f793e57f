from pydantic import BaseModel
from typing import List, Optional


# --- Category Models ---

class ExpenseCategory(BaseModel):
    """A single expense category of the household ledger vocabulary."""
    name: str                                # e.g., "Food"
    description: str = ""                    # shown to the classifier
    color: str = "#A29BFE"                   # UI badge color


# --- Fixed Category Vocabulary ---

OTHER_CATEGORY = "Other"

EXPENSE_CATEGORIES: List[ExpenseCategory] = [
    ExpenseCategory(
        name="Food",
        description="groceries, drinks, eating out",
        color="#FF6B6B",
    ),
    ExpenseCategory(
        name="Daily Goods",
        description="detergent, tissues, toilet paper, household supplies",
        color="#4ECDC4",
    ),
    ExpenseCategory(
        name="Transport",
        description="train, bus, taxi, fuel, parking",
        color="#45B7D1",
    ),
    ExpenseCategory(
        name="Medical",
        description="hospital, pharmacy, medicine",
        color="#96CEB4",
    ),
    ExpenseCategory(
        name="Entertainment",
        description="movies, books, games, hobbies",
        color="#FFEAA7",
    ),
    ExpenseCategory(
        name="Communication",
        description="mobile phone, internet",
        color="#DFE6E9",
    ),
    ExpenseCategory(
        name="Utilities",
        description="electricity, gas, water",
        color="#74B9FF",
    ),
    ExpenseCategory(
        name=OTHER_CATEGORY,
        description="anything not covered above",
        color="#A29BFE",
    ),
]


def category_names() -> List[str]:
    """Return the vocabulary names in display order."""
    return [category.name for category in EXPENSE_CATEGORIES]


def canonical_category(value: str) -> Optional[str]:
    """Return the vocabulary spelling of ``value`` (case-insensitive), or None."""
    normalized = " ".join(str(value).strip().split()).lower()
    for category in EXPENSE_CATEGORIES:
        if category.name.lower() == normalized:
            return category.name
    return None
