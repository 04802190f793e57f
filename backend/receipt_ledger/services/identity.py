import hashlib

# --- Content-addressed identity ---
#
# A receipt's id is derived from the image bytes alone, so the id doubles as
# the deduplication key: the same photo uploaded twice maps onto one record.

RECEIPT_ID_LENGTH = 36
ITEM_ORDINAL_WIDTH = 8
RESPONSE_CACHE_PREFIX = "receipt"


def derive_receipt_id(image_bytes: bytes) -> str:
    """
    Return a deterministic UUID-shaped id (8-4-4-4-12, lowercase hex)
    built from the first 16 bytes of the SHA-256 digest of ``image_bytes``.
    Empty input is valid and hashes like any other byte string.
    """
    digest = hashlib.sha256(image_bytes).hexdigest()[:32]
    return "-".join(
        (digest[0:8], digest[8:12], digest[12:16], digest[16:20], digest[20:32])
    )


def item_id_prefix_length(max_length: int) -> int:
    """Longest receipt-id prefix that keeps "<prefix>-<ordinal>" within max_length."""
    prefix_length = min(RECEIPT_ID_LENGTH, max_length - 1 - ITEM_ORDINAL_WIDTH)
    if prefix_length < 1:
        raise ValueError(
            f"Item id width {max_length} cannot hold a prefix and "
            f"a {ITEM_ORDINAL_WIDTH}-digit ordinal."
        )
    return prefix_length


def derive_item_id(receipt_id: str, index: int, max_length: int = RECEIPT_ID_LENGTH) -> str:
    """
    Deterministic id of the ``index``-th (0-based) item of a receipt.

    With the default 36-character width this is ``receipt_id[:27] + "-" +
    "%08d" % index``.
    """
    if index < 0:
        raise ValueError("Item index must be non-negative.")
    prefix = receipt_id[: item_id_prefix_length(max_length)]
    return f"{prefix}-{index:0{ITEM_ORDINAL_WIDTH}d}"


def response_cache_key(image_bytes: bytes) -> str:
    """Cache key for the raw AI transcription of an image."""
    return f"{RESPONSE_CACHE_PREFIX}:{hashlib.sha256(image_bytes).hexdigest()}"
