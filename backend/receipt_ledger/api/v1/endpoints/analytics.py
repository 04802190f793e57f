from fastapi import APIRouter, Depends, HTTPException, status

from receipt_ledger.api.deps import get_summary_service
from receipt_ledger.core.security import get_current_user
from receipt_ledger.services.aggregation import CategorySummaryService

router = APIRouter(prefix="/analytics", tags=["Analytics"])


# =====================================================
# GET /categories: Spending by Category
# =====================================================

@router.get("/categories")
async def get_category_summary(
    summary_service: CategorySummaryService = Depends(get_summary_service),
    current_user: dict = Depends(get_current_user),
):
    """
    Count and total per category over all receipt items and ledger entries.

    Returns:
        - categories: rows sorted by total, largest first
        - grand_total: sum of every row's total
    """
    try:
        rows = await summary_service.category_summary()
        rows = sorted(rows, key=lambda row: (-row.total, row.category))
        return {
            "categories": [row.model_dump() for row in rows],
            "grand_total": sum(row.total for row in rows),
        }
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch analytics: {str(e)}",
        )
