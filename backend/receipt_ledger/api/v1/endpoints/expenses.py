import asyncio
import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from receipt_ledger.api.deps import get_expense_repository, get_receipt_repository
from receipt_ledger.core.exceptions import ExpenseNotFoundError, InvalidInputError
from receipt_ledger.core.security import get_current_user
from receipt_ledger.models.category import canonical_category
from receipt_ledger.models.receipt import ExpenseEntry, ExpenseEntryCreate
from receipt_ledger.services.expense_import import parse_ledger_file
from receipt_ledger.services.firestore_service import (
    FirestoreExpenseRepository,
    FirestoreReceiptRepository,
)

router = APIRouter(prefix="/expenses", tags=["Expenses"])
logger = logging.getLogger(__name__)


# =====================================================
# 1. POST /: Create Ledger Entry
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_expense(
    payload: ExpenseEntryCreate,
    expenses: FirestoreExpenseRepository = Depends(get_expense_repository),
    receipts: FirestoreReceiptRepository = Depends(get_receipt_repository),
    current_user: dict = Depends(get_current_user),
):
    try:
        if payload.receipt_id:
            receipt = await asyncio.to_thread(receipts.find_by_id, payload.receipt_id)
            if receipt is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Receipt '{payload.receipt_id}' not found.",
                )

        now = datetime.now()
        category = payload.category.strip()
        entry = ExpenseEntry(
            id=str(uuid.uuid4()),
            receipt_id=payload.receipt_id,
            date=payload.date,
            category=canonical_category(category) or category,
            amount=payload.amount,
            description=payload.description,
            tags=payload.tags,
            created_at=now,
            updated_at=now,
        )
        if not entry.is_valid():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Expense entry needs a category and a non-negative amount.",
            )

        await asyncio.to_thread(expenses.create, entry)
        logger.info(
            "expense_created expense_id=%s category=%s amount=%d user=%s",
            entry.id,
            entry.category,
            entry.amount,
            current_user.get("uid"),
        )
        return entry.model_dump(mode="json")

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create expense entry: {str(e)}",
        )


# =====================================================
# 2. GET /: List Ledger Entries
# =====================================================

@router.get("")
async def list_expenses(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    expenses: FirestoreExpenseRepository = Depends(get_expense_repository),
    current_user: dict = Depends(get_current_user),
):
    try:
        rows = await asyncio.to_thread(expenses.find_all, limit, offset)
        return {
            "expenses": [entry.model_dump(mode="json") for entry in rows],
            "count": len(rows),
        }
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list expense entries: {str(e)}",
        )


# =====================================================
# 3. POST /import: Bulk Import from CSV / Excel
# =====================================================

@router.post("/import")
async def import_expenses(
    file: UploadFile = File(...),
    expenses: FirestoreExpenseRepository = Depends(get_expense_repository),
    current_user: dict = Depends(get_current_user),
):
    """
    Upload a ledger file (CSV/Excel) with date, amount, category and an
    optional description column. Nothing is stored if any row is invalid.
    """
    try:
        file_content = await file.read()
        entries = parse_ledger_file(file_content, file.filename or "")
        imported = await asyncio.to_thread(expenses.create_many, entries)

        logger.info(
            "expenses_imported filename=%s rows=%d user=%s",
            file.filename,
            imported,
            current_user.get("uid"),
        )
        return {
            "status": "success",
            "rows_imported": imported,
            "total_amount": sum(entry.amount for entry in entries),
        }

    except InvalidInputError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to import expense entries: {str(e)}",
        )


# =====================================================
# 4. GET /{expense_id}: Get Ledger Entry
# =====================================================

@router.get("/{expense_id}")
async def get_expense(
    expense_id: str,
    expenses: FirestoreExpenseRepository = Depends(get_expense_repository),
    current_user: dict = Depends(get_current_user),
):
    entry = await asyncio.to_thread(expenses.find_by_id, expense_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Expense entry '{expense_id}' not found.",
        )
    return entry.model_dump(mode="json")


# =====================================================
# 5. DELETE /{expense_id}: Delete Ledger Entry
# =====================================================

@router.delete("/{expense_id}")
async def delete_expense(
    expense_id: str,
    expenses: FirestoreExpenseRepository = Depends(get_expense_repository),
    current_user: dict = Depends(get_current_user),
):
    try:
        await asyncio.to_thread(expenses.delete, expense_id)
        return {"expense_id": expense_id, "deleted": True}

    except ExpenseNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to delete expense entry: {str(e)}",
        )
