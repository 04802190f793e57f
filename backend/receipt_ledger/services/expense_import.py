import io
import re
import uuid
from datetime import datetime

import pandas as pd

from receipt_ledger.core.exceptions import InvalidInputError
from receipt_ledger.models.category import canonical_category
from receipt_ledger.models.receipt import ExpenseEntry

# --- Ledger file import (CSV / Excel) ---

REQUIRED_STANDARD_COLUMNS = ("date", "amount", "category")
COLUMN_ALIASES = {
    "date": {
        "date",
        "day",
        "transactiondate",
        "purchasedate",
        "datetime",
    },
    "amount": {
        "amount",
        "total",
        "price",
        "cost",
        "spent",
    },
    "category": {
        "category",
        "type",
        "expensecategory",
    },
    "description": {
        "description",
        "memo",
        "note",
        "item",
    },
}


def _normalize_column_key(column_name: str) -> str:
    text = str(column_name).strip().lower()
    # Keep only latin letters and digits: "Amount (JPY)" -> "amountjpy"
    return re.sub(r"[^a-z0-9]+", "", text)


def read_ledger_file(file_content: bytes, filename: str) -> pd.DataFrame:
    if not filename or "." not in filename:
        raise InvalidInputError("Unsupported file format. Please upload CSV or Excel.")

    extension = filename.rsplit(".", 1)[-1].lower()
    file_buffer = io.BytesIO(file_content)

    try:
        if extension == "csv":
            return pd.read_csv(file_buffer)
        if extension in {"xls", "xlsx"}:
            return pd.read_excel(file_buffer)
    except Exception as exc:
        raise InvalidInputError(
            "Unable to read ledger file. Please upload a valid CSV or Excel file."
        ) from exc

    raise InvalidInputError("Unsupported file format. Please upload CSV or Excel.")


def standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    rename_map = {}
    normalized_aliases = {
        standard_name: [_normalize_column_key(alias) for alias in aliases]
        for standard_name, aliases in COLUMN_ALIASES.items()
    }

    for column in df.columns:
        normalized_key = _normalize_column_key(column)
        if not normalized_key:
            continue

        matched_standard = None
        for standard_name, aliases in normalized_aliases.items():
            if standard_name in rename_map.values():
                continue
            if any(
                normalized_key == alias or normalized_key.startswith(alias)
                for alias in aliases
                if alias
            ):
                matched_standard = standard_name
                break

        if matched_standard:
            rename_map[column] = matched_standard

    standardized_df = df.rename(columns=rename_map)
    missing = [col for col in REQUIRED_STANDARD_COLUMNS if col not in standardized_df]
    if missing:
        raise InvalidInputError(
            "Missing required columns: "
            + ", ".join(missing)
            + ". Required columns are date, amount, category."
        )

    return standardized_df


def parse_ledger_file(file_content: bytes, filename: str) -> list[ExpenseEntry]:
    """
    Turn an uploaded ledger file into expense entries. Any invalid row
    rejects the whole file.
    """
    if not file_content:
        raise InvalidInputError("Uploaded file is empty.")

    df = read_ledger_file(file_content, filename)
    if df.empty:
        raise InvalidInputError("Uploaded ledger file has no data rows.")

    df = standardize_columns(df)

    df["amount"] = pd.to_numeric(df["amount"], errors="coerce")
    if df["amount"].isna().any():
        raise InvalidInputError("Column 'amount' must contain valid numeric values.")
    if (df["amount"] < 0).any():
        raise InvalidInputError("Column 'amount' must not contain negative values.")
    if (df["amount"] % 1 != 0).any():
        raise InvalidInputError("Column 'amount' must contain whole currency units.")

    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    if df["date"].isna().any():
        raise InvalidInputError("Column 'date' contains invalid date values.")

    df["category"] = df["category"].fillna("").astype(str).str.strip()
    if (df["category"] == "").any():
        raise InvalidInputError("Column 'category' must not be empty.")

    if "description" in df:
        df["description"] = df["description"].fillna("").astype(str).str.strip()
    else:
        df["description"] = ""

    now = datetime.now()
    entries: list[ExpenseEntry] = []
    for _, row in df.iterrows():
        category = canonical_category(row["category"]) or row["category"]
        entries.append(
            ExpenseEntry(
                id=str(uuid.uuid4()),
                date=row["date"].to_pydatetime(),
                category=category,
                amount=int(row["amount"]),
                description=row["description"],
                tags=["import"],
                created_at=now,
                updated_at=now,
            )
        )
    return entries
