from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from receipt_ledger.api.deps import get_classifier
from receipt_ledger.core.exceptions import ClassificationError, InvalidInputError
from receipt_ledger.core.security import get_current_user
from receipt_ledger.services.categorization import CategoryClassifier

router = APIRouter(prefix="/ai", tags=["AI"])


class CategorizeRequest(BaseModel):
    receipt_info: str = Field(..., max_length=10000)


class CategorizeResponse(BaseModel):
    categories: list[str]
    raw_response: str


@router.post("/categorize", response_model=CategorizeResponse)
async def categorize_receipt_info(
    payload: CategorizeRequest,
    classifier: CategoryClassifier = Depends(get_classifier),
    _current_user: dict = Depends(get_current_user),
):
    """
    Classify a freeform receipt description (one item per line) into the
    expense category vocabulary.
    """
    try:
        categories, raw_text = await classifier.categorize_text(payload.receipt_info)
        return CategorizeResponse(categories=categories, raw_response=raw_text)

    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ClassificationError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to categorize receipt: {str(e)}",
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to categorize receipt: {str(e)}",
        )
