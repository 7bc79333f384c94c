"""Delimited table loading for the OTU ecology pipeline.

Input tables are read eagerly: they are small, and every row has to be
checked for a consistent column count before polars sees it.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd
import polars as pl

from otu_ecology.errors import ParseError

logger = logging.getLogger(__name__)

NULL_VALUES = ["NA", ""]


def detect_separator(path: Union[str, Path]) -> str:
    """Pick the field separator from the file extension.

    ``.csv`` files are comma-separated; everything else (``.txt``, ``.tsv``)
    is treated as tab-delimited.
    """
    return "," if Path(path).suffix.lower() == ".csv" else "\t"


def check_column_counts(path: Union[str, Path], separator: str) -> int:
    """Verify that every row has as many fields as the header.

    Args:
        path: Path to the delimited file
        separator: Field separator

    Returns:
        Number of data rows

    Raises:
        ParseError: If the header is missing, the file is not valid UTF-8,
            or any row is ragged
    """
    ragged: List[str] = []
    n_rows = 0
    with open(path, "r", encoding="utf-8", newline="") as fh:
        reader = csv.reader(fh, delimiter=separator)
        try:
            header = next(reader, None)
            if not header:
                raise ParseError(f"Empty table: {path}")
            for line_number, row in enumerate(reader, start=2):
                if not row:
                    continue
                n_rows += 1
                if len(row) != len(header):
                    ragged.append(
                        f"line {line_number} ({len(row)} fields, expected {len(header)})"
                    )
        except UnicodeDecodeError as e:
            raise ParseError(f"Invalid UTF-8 in {path}: {e.reason} at byte {e.start}") from e

    if ragged:
        raise ParseError(f"Inconsistent column count in {path}", ragged)

    return n_rows


def load_table(
    path: Union[str, Path],
    separator: Optional[str] = None,
    schema_overrides: Optional[Dict[str, pl.DataType]] = None,
) -> pl.DataFrame:
    """Load a delimited text table after validating its shape.

    Args:
        path: Path to data file
        separator: Field separator (detected from the extension if omitted)
        schema_overrides: Column dtypes to force instead of inferring

    Returns:
        DataFrame with the table contents

    Raises:
        FileNotFoundError: If file does not exist
        ParseError: If the table is ragged or polars cannot parse it
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    separator = separator or detect_separator(path)
    n_rows = check_column_counts(path, separator)

    try:
        df = pl.read_csv(
            path,
            separator=separator,
            null_values=NULL_VALUES,
            infer_schema_length=None,
            schema_overrides=schema_overrides,
        )
    except pl.exceptions.PolarsError as e:
        raise ParseError(f"Could not parse {path}: {e}")

    logger.debug(f"Read {path.name}: {n_rows} rows x {df.width} columns")
    return df


def validate_columns(df: pl.DataFrame, required_columns: Sequence[str]) -> None:
    """Validate that required columns exist in a DataFrame.

    Args:
        df: DataFrame to validate
        required_columns: List of column names that must exist

    Raises:
        ParseError: If any required columns are missing
    """
    missing_columns = [col for col in required_columns if col not in df.columns]

    if missing_columns:
        raise ParseError("Missing required columns", missing_columns)


def as_pandas(df: pl.DataFrame, index: Optional[str] = None) -> pd.DataFrame:
    """Hand a polars table to a pandas-based statistics library.

    Categorical (Enum) columns arrive as plain strings.

    Args:
        df: Table to convert
        index: Optional column to use as the pandas index
    """
    pdf = pd.DataFrame(df.to_dict(as_series=False), columns=df.columns)
    if index is not None:
        pdf = pdf.set_index(index)
    return pdf


def order_by(
    df: pl.DataFrame, column: str, order: Sequence[str]
) -> pl.DataFrame:
    """Sort ``df`` so that ``column`` follows the identifier list ``order``.

    Every value of ``column`` must appear in ``order``.
    """
    if df.is_empty() or not order:
        return df
    return df.sort(pl.col(column).cast(pl.Enum(list(order))))
