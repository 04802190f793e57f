import logging
from datetime import datetime
from typing import Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from receipt_ledger.core.config import settings
from receipt_ledger.core.exceptions import (
    DuplicateReceiptError,
    ExpenseNotFoundError,
    PersistenceError,
    ReceiptNotFoundError,
)
from receipt_ledger.models.receipt import ExpenseEntry, Receipt

logger = logging.getLogger(__name__)

# Firestore rejects a WriteBatch holding more writes than this.
MAX_BATCH_WRITES = 500


def create_client() -> firestore.Client:
    return firestore.Client(
        project=settings.GCP_PROJECT_ID,
        database=settings.FIRESTORE_DB,
    )


def _chunks(values: list, size: int = MAX_BATCH_WRITES):
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _page(query, limit: int, offset: int):
    if offset > 0:
        query = query.offset(offset)
    if limit > 0:
        query = query.limit(limit)
    return query


# =====================================================
# Receipt Operations
# Collection: settings.RECEIPTS_COLLECTION
# Items are embedded in the receipt document, so one document write
# stores the receipt and all of its items atomically.
# =====================================================

class FirestoreReceiptRepository:
    def __init__(
        self,
        db: firestore.Client,
        collection: str = settings.RECEIPTS_COLLECTION,
        expenses_collection: str = settings.EXPENSES_COLLECTION,
    ):
        self.db = db
        self.collection = collection
        self.expenses_collection = expenses_collection

    def create(self, receipt: Receipt) -> Receipt:
        """
        Store a new receipt document keyed by ``receipt.id``.

        Raises:
            DuplicateReceiptError: a document with this id already exists.
            PersistenceError: any other store failure.
        """
        doc_ref = self.db.collection(self.collection).document(receipt.id)
        try:
            doc_ref.create(receipt.model_dump(mode="json"))
        except gcp_exceptions.Conflict as exc:
            raise DuplicateReceiptError(receipt.id) from exc
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to save receipt '{receipt.id}': {exc}") from exc
        return receipt

    def find_by_id(self, receipt_id: str) -> Optional[Receipt]:
        """
        Retrieve a single receipt by id.

        Returns:
            Receipt or None: the stored receipt, or None if not found.
        """
        try:
            doc = self.db.collection(self.collection).document(receipt_id).get()
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to load receipt '{receipt_id}': {exc}") from exc
        if doc.exists:
            return Receipt.model_validate(doc.to_dict())
        return None

    def find_all(self, limit: int = 0, offset: int = 0) -> list[Receipt]:
        """
        List receipts, newest purchase first. ``limit=0`` returns everything.
        """
        query = self.db.collection(self.collection).order_by(
            "purchase_date", direction=firestore.Query.DESCENDING
        )
        try:
            docs = _page(query, limit, offset).stream()
            return [Receipt.model_validate(doc.to_dict()) for doc in docs]
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to list receipts: {exc}") from exc

    def delete(self, receipt_id: str) -> None:
        """
        Delete a receipt. Expense entries pointing at it keep existing with
        their ``receipt_id`` cleared.
        """
        receipt_ref = self.db.collection(self.collection).document(receipt_id)
        try:
            if not receipt_ref.get().exists:
                raise ReceiptNotFoundError(receipt_id)

            referencing = [
                doc.reference
                for doc in self.db.collection(self.expenses_collection)
                .where(filter=firestore.FieldFilter("receipt_id", "==", receipt_id))
                .stream()
            ]
            # The receipt goes in the last batch, after every reference is cleared.
            writes = [("update", ref) for ref in referencing] + [("delete", receipt_ref)]
            for chunk in _chunks(writes):
                batch = self.db.batch()
                for action, ref in chunk:
                    if action == "delete":
                        batch.delete(ref)
                    else:
                        batch.update(
                            ref,
                            {"receipt_id": None, "updated_at": datetime.now().isoformat()},
                        )
                batch.commit()
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to delete receipt '{receipt_id}': {exc}") from exc

        logger.info(
            "receipt_deleted receipt_id=%s detached_expenses=%d",
            receipt_id,
            len(referencing),
        )


# =====================================================
# Expense Entry Operations
# Collection: settings.EXPENSES_COLLECTION
# =====================================================

class FirestoreExpenseRepository:
    def __init__(self, db: firestore.Client, collection: str = settings.EXPENSES_COLLECTION):
        self.db = db
        self.collection = collection

    def create(self, entry: ExpenseEntry) -> ExpenseEntry:
        try:
            self.db.collection(self.collection).document(entry.id).set(
                entry.model_dump(mode="json")
            )
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to save expense entry '{entry.id}': {exc}") from exc
        return entry

    def create_many(self, entries: list[ExpenseEntry]) -> int:
        """
        Write entries in batches of at most MAX_BATCH_WRITES. Returns the
        number written. A failed batch raises PersistenceError; the batches
        before it stay committed.
        """
        written = 0
        for chunk in _chunks(entries):
            batch = self.db.batch()
            for entry in chunk:
                doc_ref = self.db.collection(self.collection).document(entry.id)
                batch.set(doc_ref, entry.model_dump(mode="json"))
            try:
                batch.commit()
            except gcp_exceptions.GoogleAPICallError as exc:
                logger.error(
                    "expense_import_partial written=%d total=%d error=%s",
                    written,
                    len(entries),
                    exc,
                )
                raise PersistenceError(
                    f"Failed to import expense entries after {written} of {len(entries)}: {exc}"
                ) from exc
            written += len(chunk)
        return written

    def find_by_id(self, expense_id: str) -> Optional[ExpenseEntry]:
        try:
            doc = self.db.collection(self.collection).document(expense_id).get()
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to load expense entry '{expense_id}': {exc}") from exc
        if doc.exists:
            return ExpenseEntry.model_validate(doc.to_dict())
        return None

    def find_all(self, limit: int = 0, offset: int = 0) -> list[ExpenseEntry]:
        query = self.db.collection(self.collection).order_by(
            "date", direction=firestore.Query.DESCENDING
        )
        try:
            docs = _page(query, limit, offset).stream()
            return [ExpenseEntry.model_validate(doc.to_dict()) for doc in docs]
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to list expense entries: {exc}") from exc

    def delete(self, expense_id: str) -> None:
        doc_ref = self.db.collection(self.collection).document(expense_id)
        try:
            if not doc_ref.get().exists:
                raise ExpenseNotFoundError(expense_id)
            doc_ref.delete()
        except gcp_exceptions.GoogleAPICallError as exc:
            raise PersistenceError(f"Failed to delete expense entry '{expense_id}': {exc}") from exc
