from __future__ import annotations

import io
import os
from dataclasses import dataclass, field

import pandas as pd

from utils import ApiError, is_valid_email, normalize_email, normalize_role


REQUIRED_COLUMNS = ("email", "fullname", "role")

CSV_EXTENSIONS = {".csv"}
EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}
# Legacy binary workbooks; openpyxl reads only the OOXML formats.
LEGACY_EXCEL_EXTENSIONS = {".xls"}


@dataclass
class ImportRow:
    email: str
    fullName: str
    role: str


@dataclass
class ImportResult:
    rows: list[ImportRow] = field(default_factory=list)
    invalid: int = 0


def read_user_table(file_name: str, content: bytes) -> pd.DataFrame:
    ext = os.path.splitext(str(file_name or "").lower())[1]
    buf = io.BytesIO(content or b"")
    try:
        if ext in CSV_EXTENSIONS:
            df = pd.read_csv(buf, dtype=str, keep_default_na=False)
        elif ext in EXCEL_EXTENSIONS:
            df = pd.read_excel(buf, dtype=str, keep_default_na=False, engine="openpyxl")
        elif ext in LEGACY_EXCEL_EXTENSIONS:
            raise ApiError("INVALID_ARGUMENT", "Legacy .xls workbooks are not supported. Save the sheet as .xlsx or .csv and upload again")
        else:
            raise ApiError("INVALID_ARGUMENT", "Unsupported file type. Upload a .csv or .xlsx file")
    except ApiError:
        raise
    except Exception:
        raise ApiError("INVALID_ARGUMENT", "Could not read the uploaded file")
    return df


def validate_header(df: pd.DataFrame) -> dict[str, str]:
    """Maps each required column to the file's own header; rejects missing or extra columns."""

    by_lower: dict[str, str] = {}
    for col in df.columns:
        key = str(col or "").strip().lower()
        if key in by_lower:
            raise ApiError("INVALID_ARGUMENT", f"Duplicate column: {col}")
        by_lower[key] = col

    if set(by_lower) != set(REQUIRED_COLUMNS):
        raise ApiError("INVALID_ARGUMENT", "File must have exactly these columns: email, fullname, role")
    return {k: by_lower[k] for k in REQUIRED_COLUMNS}


def parse_user_rows(df: pd.DataFrame) -> ImportResult:
    cols = validate_header(df)
    result = ImportResult()
    seen: set[str] = set()

    for _, rec in df.iterrows():
        email = normalize_email(rec[cols["email"]])
        full_name = str(rec[cols["fullname"]] or "").strip()
        role = normalize_role(rec[cols["role"]])

        if not is_valid_email(email) or not full_name or not role:
            result.invalid += 1
            continue
        # Later rows for the same email win.
        if email in seen:
            result.rows = [r for r in result.rows if r.email != email]
        seen.add(email)
        result.rows.append(ImportRow(email=email, fullName=full_name, role=role))

    return result


def load_user_import(file_name: str, content: bytes) -> ImportResult:
    return parse_user_rows(read_user_table(file_name, content))
