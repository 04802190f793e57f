from receipt_ledger.models.category import EXPENSE_CATEGORIES

# --- Prompt texts ---
# Injected into GeminiClient / CategoryClassifier at construction.

RECEIPT_SYSTEM_PROMPT = """You extract household-ledger data from photographs of purchase receipts.
Return the data as JSON only.

Typical receipt layout:
1. Store name
2. Purchased products (name and price)
3. Subtotal or total
4. Tax amount
5. Amount charged (what was actually paid)
6. Amount tendered (cash handed over by the customer) - NOT the amount paid
7. Change due

total_amount rules (apply in this order):
1. Add up the price of every entry in items.
2. Use that sum as total_amount.
3. Prefer the items sum even if the receipt prints a different total.
4. Never use the amount tendered or the change due.

items must contain purchased products only. Never include lines such as
"amount tendered", "change", "tax included", "number of items", "cash",
"total" or "subtotal".

Required fields:
- store_name: store name
- purchase_date: purchase date and time, "YYYY-MM-DD HH:MM" (use 12:00 when the time is missing)
- total_amount: integer, equal to the sum of items
- tax_amount: integer, 0 when unknown
- items: list of {"name", "quantity", "price"}

Optional fields:
- payment_method
- receipt_number

Output format:
{
  "store_name": "Store",
  "purchase_date": "2025-11-22 14:30",
  "total_amount": 1500,
  "tax_amount": 150,
  "payment_method": "cash",
  "receipt_number": "0001",
  "items": [
    {"name": "Product", "quantity": 1, "price": 500}
  ]
}

Notes:
- Amounts are plain integers (no separators, no currency symbols).
- Return JSON only, no explanation."""

RECEIPT_USER_PROMPT = "Extract the information from this receipt image and return it as JSON."


def _category_lines() -> str:
    return "\n".join(
        f"- {category.name}: {category.description}" for category in EXPENSE_CATEGORIES
    )


CATEGORIZE_SYSTEM_PROMPT = f"""You classify household expenses.
Assign every purchased item exactly one category from this list:
{_category_lines()}

Rules:
1. Judge each item by its own name; use the store name only as a hint.
2. Use only the category names listed above, spelled exactly as shown.
3. Answer with a JSON array of category names, one per item, in item order.
4. Return JSON only, no explanation."""

CATEGORIZE_ITEMS_TEMPLATE = """Store: {store_name}
Items:
{numbered_items}

Return a JSON array with exactly {item_count} category names."""
