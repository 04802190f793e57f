class ReceiptLedgerError(Exception):
    """Base class for every error raised by the receipt ledger services."""


class InvalidInputError(ReceiptLedgerError):
    """Client-side validation failure (empty image, empty text, bad file)."""


class AIProviderError(ReceiptLedgerError):
    """The AI provider call failed, timed out, or returned nothing usable."""


class ExtractionError(ReceiptLedgerError):
    """The receipt could not be turned into a structured record."""


class ClassificationError(ReceiptLedgerError):
    """Item categories could not be obtained. Recoverable during ingestion."""


class PersistenceError(ReceiptLedgerError):
    """The persistent store rejected or failed a read/write."""


class DuplicateReceiptError(PersistenceError):
    """A receipt with the same id already exists in the store."""

    def __init__(self, receipt_id: str):
        super().__init__(f"Receipt '{receipt_id}' already exists.")
        self.receipt_id = receipt_id


class ReceiptNotFoundError(ReceiptLedgerError):
    def __init__(self, receipt_id: str):
        super().__init__(f"Receipt '{receipt_id}' not found.")
        self.receipt_id = receipt_id


class ExpenseNotFoundError(ReceiptLedgerError):
    def __init__(self, expense_id: str):
        super().__init__(f"Expense entry '{expense_id}' not found.")
        self.expense_id = expense_id


class QueueFullError(ReceiptLedgerError):
    """The background ingestion queue has no free slot."""
