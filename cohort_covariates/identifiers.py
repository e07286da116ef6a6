"""
Warehouse identifier resolution.

Table and schema names are case-folded here and quoted only when a statement
is rendered, so the same identifier can be compared, logged and rendered for
any SQLAlchemy dialect.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import MetaData, Table
from sqlalchemy.engine import Dialect


@dataclass(frozen=True)
class QualifiedIdentifier:
    """
    A resolved (schema, table) pair.

    Attributes:
        table: Case-folded table name
        schema: Case-folded schema name, or None for the default schema
    """
    table: str
    schema: Optional[str] = None

    def __str__(self) -> str:
        if self.schema:
            return f"{self.schema}.{self.table}"
        return self.table

    def unqualified(self) -> "QualifiedIdentifier":
        return QualifiedIdentifier(self.table)

    def to_table(self, metadata: Optional[MetaData] = None) -> Table:
        """Build a column-less Table usable in DDL constructs."""
        return Table(self.table, metadata or MetaData(), schema=self.schema)

    def render(self, dialect: Dialect) -> str:
        """Render the identifier using the dialect's quoting rules."""
        return dialect.identifier_preparer.format_table(self.to_table())


def _check_name(value, label: str) -> None:
    if not isinstance(value, str):
        raise TypeError(f"{label} must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError(f"{label} must not be empty")


def resolve(
    table: str,
    schema: Optional[str] = None,
    fold_case: bool = True,
    rule: Callable[[str], str] = str.upper,
) -> QualifiedIdentifier:
    """
    Resolve a table identifier.

    Args:
        table: Table name
        schema: Optional schema name
        fold_case: Apply the folding rule to table and schema
        rule: Case-folding rule (default: upper-case, the DB2 convention)

    Returns:
        QualifiedIdentifier with folded names
    """
    _check_name(table, "table")
    if schema is not None:
        _check_name(schema, "schema")

    if fold_case:
        table = rule(table)
        if schema is not None:
            schema = rule(schema)

    return QualifiedIdentifier(table=table, schema=schema)


def resolve_schema(
    schema: str,
    fold_case: bool = True,
    rule: Callable[[str], str] = str.upper,
) -> str:
    """Resolve a bare schema name with the same folding rule as tables."""
    _check_name(schema, "schema")
    return rule(schema) if fold_case else schema
