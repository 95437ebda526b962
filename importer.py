"""Bulk account import from CSV."""

import io
import logging
from typing import List

import pandas as pd
from pydantic.alias_generators import to_snake

from schemas import AccountForm

logger = logging.getLogger(__name__)

IMPORTABLE_FIELDS = set(AccountForm.model_fields) - {"notes", "stage", "deal_score"}


def clean_value(val) -> str:
    if val is None or pd.isna(val):
        return ""
    val_str = str(val).strip()
    return "" if val_str.lower() == "nan" else val_str


def read_accounts_csv(contents: bytes) -> List[AccountForm]:
    """Parse a CSV whose header row names account fields.

    Headers may be camelCase (``companyName``) or snake_case
    (``company_name``); columns that are not account fields are ignored.
    Rows without a company name are skipped.
    """
    df = pd.read_csv(io.BytesIO(contents), dtype=str, keep_default_na=False)
    columns = {col: to_snake(col.strip()) for col in df.columns}
    known = {col: name for col, name in columns.items() if name in IMPORTABLE_FIELDS}
    ignored = sorted(set(columns) - set(known))
    if ignored:
        logger.info("Ignoring CSV columns: %s", ", ".join(ignored))

    forms = []
    for _, row in df.iterrows():
        data = {name: clean_value(row[col]) for col, name in known.items()}
        if not data.get("company_name"):
            continue
        forms.append(AccountForm(**data))
    logger.info("Read %d accounts from CSV (%d rows)", len(forms), len(df))
    return forms
