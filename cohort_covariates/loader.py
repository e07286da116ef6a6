"""
Loading CSV extracts against declared column types.

Every CSV file is paired with a JSON column schema of the same name, e.g.
`C19_COHORT20.csv` and `C19_COHORT20.json`:

    {"ALF_E": "bigint", "WOB": "date", "GNDR_CD": "character"}

Files are read as text, checked column-for-column against the schema and
converted to the declared types before being written to the warehouse.
Date columns take `YYYY-MM-DD` or `YYYY/MM/DD`, one form per column.
"""

import json
import logging
import os
from enum import Enum
from glob import glob
from typing import Callable, Optional, Union

import pandas as pd

from .database import Database
from .errors import SchemaMismatchError, TypeConversionError, UnknownTypeConversionError
from .materialize import write_dataframe

logger = logging.getLogger(__name__)


class ColumnType(str, Enum):
    """Declared column types a schema may use."""
    CHARACTER = "character"
    NUMERIC = "numeric"
    INTEGER = "integer"
    BIGINT = "bigint"
    LOGICAL = "logical"
    DATE = "date"
    DATETIME = "datetime"


TRUE_VALUES = {"true", "t", "yes", "y", "1"}
FALSE_VALUES = {"false", "f", "no", "n", "0"}


def _to_logical(values: pd.Series) -> pd.Series:
    def convert(value):
        if pd.isna(value):
            return pd.NA
        key = str(value).strip().lower()
        if key in TRUE_VALUES:
            return True
        if key in FALSE_VALUES:
            return False
        raise ValueError(f"cannot interpret {value!r} as logical")

    return values.map(convert).astype("boolean")


DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d")


def _to_date(values: pd.Series) -> pd.Series:
    # one format per column, the first that parses every value
    error = None
    for date_format in DATE_FORMATS:
        try:
            parsed = pd.to_datetime(values, format=date_format)
        except ValueError as e:
            error = e
            continue
        return parsed.dt.date.where(parsed.notna(), None)
    raise error


CONVERTERS: dict[ColumnType, Callable[[pd.Series], pd.Series]] = {
    ColumnType.CHARACTER: lambda values: values.astype("string"),
    ColumnType.NUMERIC: lambda values: pd.to_numeric(values).astype("float64"),
    ColumnType.INTEGER: lambda values: pd.to_numeric(values).astype("Int32"),
    ColumnType.BIGINT: lambda values: pd.to_numeric(values).astype("Int64"),
    ColumnType.LOGICAL: _to_logical,
    ColumnType.DATE: _to_date,
    ColumnType.DATETIME: lambda values: pd.to_datetime(values),
}


def column_type(declared: Union[str, ColumnType], column: str, source: str) -> ColumnType:
    """Map a declared type name to a ColumnType."""
    try:
        return ColumnType(declared)
    except ValueError:
        raise UnknownTypeConversionError(column, source, str(declared)) from None


def read_column_schema(schema_path: str) -> dict[str, ColumnType]:
    """
    Read a JSON column schema.

    Args:
        schema_path: JSON file mapping column names to declared types

    Returns:
        Ordered mapping of column name to ColumnType
    """
    source = os.path.basename(schema_path)
    with open(schema_path, 'r') as f:
        declared = json.load(f)

    if not isinstance(declared, dict):
        raise ValueError(f"Column schema {source} must be a JSON object")

    return {
        column: column_type(type_name, column, source)
        for column, type_name in declared.items()
    }


def apply_column_schema(
    frame: pd.DataFrame,
    column_schema: dict[str, Union[str, ColumnType]],
    source: str,
) -> pd.DataFrame:
    """
    Check a text-valued frame against a column schema and convert it.

    Args:
        frame: Data read as text
        column_schema: Column name to declared type
        source: Name used in error messages (usually the file name)

    Returns:
        New DataFrame with columns in schema order and declared types

    Raises:
        SchemaMismatchError: columns missing from or not declared in the schema
        UnknownTypeConversionError: a declared type has no conversion rule
        TypeConversionError: values fail conversion to the declared type
    """
    missing = [col for col in column_schema if col not in frame.columns]
    extra = [col for col in frame.columns if col not in column_schema]
    if missing or extra:
        raise SchemaMismatchError(source, missing=missing, extra=extra)

    converted = {}
    for column, declared in column_schema.items():
        kind = column_type(declared, column, source)
        try:
            converted[column] = CONVERTERS[kind](frame[column])
        except (ValueError, TypeError, OverflowError) as e:
            raise TypeConversionError(column, source, kind.value, e) from e

    return pd.DataFrame(converted, index=frame.index)


def load_typed_csv(csv_path: str, schema_path: str) -> pd.DataFrame:
    """Read a CSV as text and apply its JSON column schema."""
    column_schema = read_column_schema(schema_path)
    frame = pd.read_csv(csv_path, dtype=str)
    return apply_column_schema(frame, column_schema, os.path.basename(csv_path))


def import_csv_directory(
    db: Database,
    input_dir: str,
    schema_dir: str,
    schema: Optional[str] = None,
    overwrite: bool = True,
) -> dict[str, int]:
    """
    Load every CSV in a directory into the warehouse.

    Table names are the upper-cased file names without extension.

    Args:
        db: Target database
        input_dir: Directory of CSV files
        schema_dir: Directory of JSON column schemas named after the CSVs
        schema: Target schema for the tables
        overwrite: Replace existing tables

    Returns:
        Mapping of qualified table name to rows loaded
    """
    counts = {}
    for csv_path in sorted(glob(os.path.join(input_dir, "*.csv"))):
        stem = os.path.splitext(os.path.basename(csv_path))[0]
        schema_path = os.path.join(schema_dir, f"{stem}.json")
        if not os.path.exists(schema_path):
            raise FileNotFoundError(
                f"Schema JSON file does not exist for {os.path.basename(csv_path)}"
            )

        frame = load_typed_csv(csv_path, schema_path)
        handle = write_dataframe(db, frame, stem.upper(), schema, overwrite=overwrite)
        counts[str(handle.identifier)] = len(frame)
        logger.info("Loaded %s to %s", os.path.basename(csv_path), handle.identifier)

    return counts
