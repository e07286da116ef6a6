"""
Persisting queries and data frames as warehouse tables.

`materialize` is the only place a lazy query is executed for its side
effect: it turns any select into a named table under an explicit overwrite
policy and hands back a `TableHandle` that can feed further queries.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

import pandas as pd
from sqlalchemy import column, func, inspect, select, table as table_clause
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.schema import DropTable
from sqlalchemy.sql.expression import ClauseElement, Executable
from sqlalchemy.sql.selectable import FromClause, Select, SelectBase, TableClause

from .database import Database
from .errors import TableAlreadyExistsError
from .identifiers import QualifiedIdentifier

logger = logging.getLogger(__name__)

# Dialects whose temporary tables may carry a schema qualifier
QUALIFIED_TEMPORARY_DIALECTS = {"ibm_db_sa"}


class CreateTableAs(Executable, ClauseElement):
    """CREATE [TEMPORARY] TABLE <target> AS <query>"""

    inherit_cache = False

    def __init__(self, target, query: SelectBase, temporary: bool = False):
        self.target = target
        self.query = query
        self.temporary = temporary


@compiles(CreateTableAs)
def _create_table_as(element, compiler, **kw):
    prefix = "CREATE TEMPORARY TABLE" if element.temporary else "CREATE TABLE"
    target = compiler.preparer.format_table(element.target)
    return f"{prefix} {target} AS {compiler.process(element.query, **kw)}"


@compiles(CreateTableAs, "ibm_db_sa")
def _create_table_as_db2(element, compiler, **kw):
    prefix = "CREATE GLOBAL TEMPORARY TABLE" if element.temporary else "CREATE TABLE"
    target = compiler.preparer.format_table(element.target)
    return f"{prefix} {target} AS ({compiler.process(element.query, **kw)}) WITH DATA"


@dataclass(frozen=True)
class TableHandle:
    """
    A persisted warehouse table usable as a query input.

    The relation carries column names only, so values come back exactly as
    the driver returns them.

    Attributes:
        identifier: Resolved table identifier
        relation: Lightweight table construct for composing queries
        db: Database the table lives in
        backing_query: Rendered statement the table was created from, if any
    """
    identifier: QualifiedIdentifier
    relation: TableClause
    db: Database = field(repr=False, compare=False)
    backing_query: Optional[str] = field(default=None, repr=False)

    @property
    def c(self):
        return self.relation.c

    @property
    def columns(self) -> list[str]:
        return [col.name for col in self.relation.columns]

    def select(self) -> Select:
        return select(self.relation)

    def head(self, n: int = 1000) -> Select:
        return self.select().limit(n)

    def count(self) -> int:
        query = select(func.count()).select_from(self.relation)
        with self.db.engine.connect() as conn:
            return conn.execute(query).scalar()

    def collect(self, limit: Optional[int] = None) -> pd.DataFrame:
        """Execute the relation and return its rows as a DataFrame."""
        query = self.select() if limit is None else self.head(limit)
        with self.db.engine.connect() as conn:
            return pd.read_sql(query, conn)


def table_handle(
    db: Database,
    identifier: QualifiedIdentifier,
    connection: Optional[Connection] = None,
    backing_query: Optional[str] = None,
) -> TableHandle:
    """Build a handle for an existing table by reading its column names."""
    bind = connection if connection is not None else db.engine
    names = [
        col["name"]
        for col in inspect(bind).get_columns(identifier.table, schema=identifier.schema)
    ]
    relation = table_clause(
        identifier.table, *(column(name) for name in names), schema=identifier.schema
    )
    return TableHandle(identifier, relation, db, backing_query)


Relation = Union[SelectBase, FromClause, TableHandle]


def as_selectable(query: Relation) -> SelectBase:
    """Normalize a query, table or handle into a select statement."""
    if isinstance(query, TableHandle):
        return query.select()
    if isinstance(query, SelectBase):
        return query
    if isinstance(query, FromClause):
        return select(query)
    raise TypeError(f"Cannot build a query from {type(query).__name__}")


def render_sql(query: Relation, dialect: Dialect) -> str:
    """Render a query to statement text with its literal values inlined."""
    compiled = as_selectable(query).compile(
        dialect=dialect, compile_kwargs={"literal_binds": True}
    )
    return str(compiled).strip()


def _target(db: Database, table, schema: Optional[str]) -> QualifiedIdentifier:
    if isinstance(table, QualifiedIdentifier):
        return table
    return db.resolve(table, schema)


def materialize(
    query: Relation,
    db: Database,
    table: Union[str, QualifiedIdentifier],
    schema: Optional[str] = None,
    overwrite: bool = False,
    temporary: bool = False,
) -> TableHandle:
    """
    Compute a query and store the result as a table.

    The statement is rendered before anything runs. The existence check,
    drop and create then run in one transaction, so a failed create leaves
    the previous table in place on warehouses with transactional DDL,
    SQLite included.

    Args:
        query: Select, table, or TableHandle to persist
        db: Target database
        table: Table name (or an already resolved identifier)
        schema: Optional schema name
        overwrite: Drop an existing table of the same name first
        temporary: Create a temporary table

    Returns:
        TableHandle pointing to the new table

    Raises:
        TableAlreadyExistsError: the table exists and overwrite is False;
            no statement is executed in that case
    """
    identifier = _target(db, table, schema)
    if temporary and identifier.schema and db.dialect_name not in QUALIFIED_TEMPORARY_DIALECTS:
        logger.debug("Temporary tables are unqualified on %s; ignoring schema %s",
                     db.dialect_name, identifier.schema)
        identifier = identifier.unqualified()

    statement_query = as_selectable(query)
    backing_query = render_sql(statement_query, db.engine.dialect)

    with db.connect() as conn:
        if db.table_exists(identifier, conn):
            if not overwrite:
                raise TableAlreadyExistsError(identifier)
            logger.info("Dropping existing table %s", identifier)
            conn.execute(DropTable(identifier.to_table()))

        logger.info("Creating %stable %s", "temporary " if temporary else "", identifier)
        logger.debug("%s", backing_query)
        conn.execute(CreateTableAs(identifier.to_table(), statement_query, temporary))

        return table_handle(db, identifier, conn, backing_query)


def write_dataframe(
    db: Database,
    frame: pd.DataFrame,
    table: Union[str, QualifiedIdentifier],
    schema: Optional[str] = None,
    overwrite: bool = False,
    append: bool = False,
) -> TableHandle:
    """
    Write a data frame to a warehouse table.

    Args:
        db: Target database
        frame: Data to write (index is not written)
        table: Table name
        schema: Optional schema name
        overwrite: Replace an existing table
        append: Add rows to an existing table

    Returns:
        TableHandle for the written table
    """
    if overwrite and append:
        raise ValueError("overwrite and append are mutually exclusive")

    identifier = _target(db, table, schema)

    with db.connect() as conn:
        exists = db.table_exists(identifier, conn)
        if exists and not (overwrite or append):
            raise TableAlreadyExistsError(identifier)
        if exists and overwrite:
            logger.info("Dropping existing table %s", identifier)
            conn.execute(DropTable(identifier.to_table()))

        frame.to_sql(
            identifier.table,
            conn,
            schema=identifier.schema,
            if_exists="append" if append else "fail",
            index=False,
        )
        logger.info("Wrote %d rows to %s", len(frame), identifier)

        return table_handle(db, identifier, conn)
