import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from receipt_ledger.api.deps import (
    get_ingestion_queue,
    get_ingestion_service,
    get_receipt_repository,
)
from receipt_ledger.core.exceptions import (
    AIProviderError,
    InvalidInputError,
    QueueFullError,
    ReceiptNotFoundError,
)
from receipt_ledger.core.security import get_current_user
from receipt_ledger.services.firestore_service import FirestoreReceiptRepository
from receipt_ledger.services.image_validation import validate_image
from receipt_ledger.services.ingestion import ReceiptIngestionService
from receipt_ledger.services.ingestion_queue import IngestionQueue

router = APIRouter(prefix="/receipts", tags=["Receipts"])
logger = logging.getLogger(__name__)


async def _read_image(file: UploadFile) -> tuple[bytes, str]:
    image_bytes = await file.read()
    try:
        mime_type = validate_image(image_bytes)
    except InvalidInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return image_bytes, mime_type


# =====================================================
# 1. POST /upload: Upload & Process Receipt
# =====================================================

@router.post("/upload")
async def upload_receipt(
    file: UploadFile = File(...),
    service: ReceiptIngestionService = Depends(get_ingestion_service),
    current_user: dict = Depends(get_current_user),
):
    """
    Upload a receipt image → transcribe → reconcile → categorize → save.

    Uploading the same image twice returns the stored receipt with
    ``already_exists: true`` and stores nothing new.
    """
    try:
        image_bytes, mime_type = await _read_image(file)
        outcome = await service.ingest(image_bytes, mime_type)

        logger.info(
            "receipt_upload_done receipt_id=%s user=%s created=%s",
            outcome.receipt.id,
            current_user.get("uid"),
            outcome.created,
        )
        return {
            **outcome.receipt.model_dump(mode="json"),
            "already_exists": not outcome.created,
        }

    except HTTPException:
        raise
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AIProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to recognize receipt: {str(e)}",
        )
    except Exception as e:
        logger.error("receipt_upload_failed error=%s", str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process receipt: {str(e)}",
        )


# =====================================================
# 2. POST /upload/async: Queue Receipt for Background Ingestion
# =====================================================

@router.post("/upload/async", status_code=status.HTTP_202_ACCEPTED)
async def upload_receipt_async(
    file: UploadFile = File(...),
    queue: IngestionQueue = Depends(get_ingestion_queue),
    current_user: dict = Depends(get_current_user),
):
    """
    Accept the image and return a job to poll at ``/receipts/jobs/{job_id}``.
    """
    try:
        image_bytes, mime_type = await _read_image(file)
        job = await queue.submit(image_bytes, mime_type)
        return job.model_dump(mode="json")

    except HTTPException:
        raise
    except QueueFullError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to queue receipt: {str(e)}",
        )


# =====================================================
# 3. GET /jobs/{job_id}: Background Job Status
# =====================================================

@router.get("/jobs/{job_id}")
async def get_ingestion_job(
    job_id: str,
    queue: IngestionQueue = Depends(get_ingestion_queue),
    current_user: dict = Depends(get_current_user),
):
    job = queue.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job '{job_id}' not found.",
        )
    return job.model_dump(mode="json")


# =====================================================
# 4. GET /: List Receipts
# =====================================================

@router.get("")
async def list_receipts(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    receipts: FirestoreReceiptRepository = Depends(get_receipt_repository),
    current_user: dict = Depends(get_current_user),
):
    """
    List receipts, newest purchase date first.
    """
    try:
        rows = await asyncio.to_thread(receipts.find_all, limit, offset)
        return {
            "receipts": [receipt.model_dump(mode="json") for receipt in rows],
            "count": len(rows),
        }
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list receipts: {str(e)}",
        )


# =====================================================
# 5. GET /{receipt_id}: Get Receipt Detail
# =====================================================

@router.get("/{receipt_id}")
async def get_receipt(
    receipt_id: str,
    receipts: FirestoreReceiptRepository = Depends(get_receipt_repository),
    current_user: dict = Depends(get_current_user),
):
    receipt = await asyncio.to_thread(receipts.find_by_id, receipt_id)

    if receipt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Receipt '{receipt_id}' not found.",
        )

    return receipt.model_dump(mode="json")


# =====================================================
# 6. DELETE /{receipt_id}: Delete Receipt
# =====================================================

@router.delete("/{receipt_id}")
async def delete_receipt(
    receipt_id: str,
    receipts: FirestoreReceiptRepository = Depends(get_receipt_repository),
    current_user: dict = Depends(get_current_user),
):
    """
    Delete a receipt and its items. Ledger entries pointing at it are kept
    with their receipt reference cleared.
    """
    try:
        await asyncio.to_thread(receipts.delete, receipt_id)
        return {"receipt_id": receipt_id, "deleted": True}

    except ReceiptNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to delete receipt: {str(e)}",
        )
