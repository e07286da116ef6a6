"""
Exception types raised by the covariate pipeline.

Warehouse connectivity and statement errors are not wrapped; they propagate
from SQLAlchemy unchanged.
"""

from typing import Iterable, Optional


class CovariateError(Exception):
    """Base class for all errors raised by this package."""


class TableAlreadyExistsError(CovariateError):
    """A write target already exists and overwrite was not requested."""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(
            f"Table {identifier} already exists. Use overwrite=True."
        )


class SchemaMismatchError(CovariateError):
    """
    The columns of an input do not match the declared or expected shape.

    Attributes:
        source: Name of the offending file, table or query
        missing: Expected columns that are absent
        extra: Columns present that were not declared
    """

    def __init__(
        self,
        source: str,
        missing: Iterable[str] = (),
        extra: Iterable[str] = (),
    ):
        self.source = source
        self.missing = list(missing)
        self.extra = list(extra)

        problems = []
        if self.missing:
            problems.append(f"is missing columns: {', '.join(self.missing)}")
        if self.extra:
            problems.append(
                f"has extra columns not in schema: {', '.join(self.extra)}"
            )
        super().__init__(f"{source} {'; '.join(problems)}")


class UnknownTypeConversionError(CovariateError):
    """A column was declared with a type that has no conversion rule."""

    def __init__(self, column: str, source: str, declared_type: str):
        self.column = column
        self.source = source
        self.declared_type = declared_type
        super().__init__(
            f"Unknown type '{declared_type}' for column {column} in {source}"
        )


class TypeConversionError(CovariateError):
    """A column's values could not be converted to the declared type."""

    def __init__(
        self,
        column: str,
        source: str,
        declared_type: str,
        cause: Optional[BaseException] = None,
    ):
        self.column = column
        self.source = source
        self.declared_type = declared_type
        self.cause = cause
        super().__init__(
            f"Error converting column {column} in {source} "
            f"to type {declared_type}: {cause}"
        )
