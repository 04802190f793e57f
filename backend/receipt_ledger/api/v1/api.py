from fastapi import APIRouter

from receipt_ledger.api.v1.endpoints import ai, analytics, expenses, receipts

# --- API v1 Router Aggregator ---
# Collects all endpoint routers under the /api/v1 prefix.

api_router = APIRouter(prefix="/api/v1")

# Receipt ingestion and management
api_router.include_router(receipts.router)

# Freeform ledger entries
api_router.include_router(expenses.router)

# Category summary
api_router.include_router(analytics.router)

# Ad-hoc categorization
api_router.include_router(ai.router)
