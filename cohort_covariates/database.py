"""
Database connectivity layer for the research warehouse.

Supports SQLite (for testing/synthetic data), PostgreSQL and DB2 (the
production warehouse). Connections are expected to be authenticated already;
nothing here prompts for credentials.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterable, Optional

import yaml
from sqlalchemy import MetaData, Table, create_engine, event, func, inspect, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateSchema, DropSchema

from .identifiers import QualifiedIdentifier, resolve, resolve_schema

logger = logging.getLogger(__name__)


class Database:
    """
    Connection manager for the warehouse.

    Provides transactional connections, identifier resolution, table
    reflection and schema management.

    Examples:
        # SQLite for testing
        db = Database("sqlite:///test_data.db")

        # DB2 for production
        db = Database("ibm_db_sa://user:pass@host:50000/PR_SAIL")

        # Using context manager
        with db.connect() as conn:
            conn.execute(select(db.table("C19_COHORT20", "SAILWMCCV")))
    """

    def __init__(self, connection_string: str, echo: bool = False, fold_case: bool = True):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy database URL
            echo: If True, log all SQL statements
            fold_case: Upper-case table and schema names before use
        """
        self.connection_string = connection_string
        self.engine = create_engine(connection_string, echo=echo)
        self.fold_case = fold_case
        self._attached: dict[str, str] = {}

        if self.engine.dialect.name == "sqlite":
            self._discover_sqlite_schemas()
            event.listen(self.engine, "connect", self._on_sqlite_connect)
            event.listen(self.engine, "begin", _begin_sqlite_transaction)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def connect(self) -> Generator[Connection, None, None]:
        """
        Provide a transactional scope around a series of statements.

        Yields:
            Connection: committed on success, rolled back on error
        """
        with self.engine.begin() as conn:
            yield conn

    def resolve(self, table: str, schema: Optional[str] = None) -> QualifiedIdentifier:
        """Resolve a table identifier using this database's folding policy."""
        return resolve(table, schema, fold_case=self.fold_case)

    def table(self, table: str, schema: Optional[str] = None) -> Table:
        """
        Reflect an existing table as a lazy relation.

        Args:
            table: Table name
            schema: Optional schema name

        Returns:
            SQLAlchemy Table usable in select() and joins
        """
        identifier = self.resolve(table, schema)
        return Table(
            identifier.table,
            MetaData(),
            schema=identifier.schema,
            autoload_with=self.engine,
        )

    def table_exists(
        self,
        identifier: QualifiedIdentifier,
        connection: Optional[Connection] = None,
    ) -> bool:
        """Check whether a table exists under the identifier."""
        bind = connection if connection is not None else self.engine
        return inspect(bind).has_table(identifier.table, schema=identifier.schema)

    def schema_exists(self, name: str, connection: Optional[Connection] = None) -> bool:
        bind = connection if connection is not None else self.engine
        names = {s.upper() for s in inspect(bind).get_schema_names()}
        return name.upper() in names

    def ensure_schema(self, name: str, replace: bool = False) -> bool:
        """
        Create a schema if it does not exist.

        Args:
            name: Schema name (case-folded like table identifiers)
            replace: Drop and recreate the schema if it exists, discarding
                any tables inside it

        Returns:
            True if the schema was created or recreated, False if it already
            existed and was left alone
        """
        schema = resolve_schema(name, fold_case=self.fold_case)

        if self.dialect_name == "sqlite":
            return self._ensure_sqlite_schema(schema, replace)

        with self.connect() as conn:
            exists = self.schema_exists(schema, conn)
            if exists and not replace:
                logger.info("Schema %s already exists, skipping.", schema)
                return False
            if exists:
                logger.info("Dropping and recreating schema %s...", schema)
                self._drop_schema_tables(conn, schema)
                conn.execute(DropSchema(schema))
            else:
                logger.info("Creating schema %s...", schema)
            conn.execute(CreateSchema(schema))
        return True

    def _ensure_sqlite_schema(self, schema: str, replace: bool) -> bool:
        # SQLite has no CREATE SCHEMA; schemas are attached databases
        if self.schema_exists(schema):
            if not replace:
                logger.info("Schema %s already exists, skipping.", schema)
                return False
            logger.info("Dropping and recreating schema %s...", schema)
            with self.connect() as conn:
                self._drop_schema_tables(conn, schema)
            return True

        logger.info("Creating schema %s...", schema)
        database = self.engine.url.database
        if not database or database == ":memory:":
            self._attached[schema] = ":memory:"
            # in-memory engines keep one connection per thread; attach to it
            # outside a transaction, where ATTACH is not allowed
            with self.engine.connect() as conn:
                conn.connection.dbapi_connection.execute(_attach_statement(schema, ":memory:"))
        else:
            self._attached[schema] = str(_schema_file(Path(database), schema))
            # pooled connections predate the attachment
            self.engine.dispose()
        return True

    def _discover_sqlite_schemas(self) -> None:
        # schema files created by an earlier session sit next to the main file
        database = self.engine.url.database
        if not database or database == ":memory:":
            return
        path = Path(database)
        for sibling in sorted(path.parent.glob(f"{path.stem}_*{path.suffix}")):
            schema = sibling.stem[len(path.stem) + 1:].upper()
            self._attached[schema] = str(sibling)

    def _on_sqlite_connect(self, dbapi_connection, connection_record) -> None:
        # let the begin event issue BEGIN so DDL joins the transaction
        dbapi_connection.isolation_level = None
        for schema, path in self._attached.items():
            dbapi_connection.execute(_attach_statement(schema, path))

    @staticmethod
    def _drop_schema_tables(conn: Connection, schema: str) -> None:
        metadata = MetaData()
        metadata.reflect(conn, schema=schema)
        metadata.drop_all(conn)

    def execute_sql(self, sql: str) -> list:
        """
        Execute raw SQL and return results.

        Args:
            sql: SQL query string

        Returns:
            List of result rows
        """
        with self.engine.connect() as conn:
            result = conn.execute(text(sql))
            return result.fetchall()

    def get_table_counts(self, identifiers: Iterable[QualifiedIdentifier]) -> dict[str, int]:
        """Get row counts for the given tables; missing tables count as 0."""
        counts = {}
        with self.engine.connect() as conn:
            for identifier in identifiers:
                if not self.table_exists(identifier, conn):
                    counts[str(identifier)] = 0
                    continue
                query = select(func.count()).select_from(identifier.to_table())
                counts[str(identifier)] = conn.execute(query).scalar()
        return counts

    def is_connected(self) -> bool:
        """Test if database connection is working."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False


def _begin_sqlite_transaction(conn: Connection) -> None:
    conn.exec_driver_sql("BEGIN")


def _schema_file(database: Path, schema: str) -> Path:
    return database.with_name(f"{database.stem}_{schema.lower()}{database.suffix}")


def _attach_statement(schema: str, path: str) -> str:
    quoted_path = path.replace("'", "''")
    return f"ATTACH DATABASE '{quoted_path}' AS \"{schema}\""


def create_engine_from_config(config_path: str) -> Database:
    """
    Create Database instance from YAML config file.

    Args:
        config_path: Path to config.yaml file

    Returns:
        Configured Database instance

    Config file format:
        database:
          type: sqlite  # or postgresql, db2
          path: ./warehouse.db  # for sqlite
          host: localhost  # for postgresql/db2
          port: 50000
          name: PR_SAIL
          user: username
          password_env: WAREHOUSE_PASSWORD  # env var holding the password
          fold_case: true
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    db_config = config.get('database', {})
    db_type = db_config.get('type', 'sqlite')
    fold_case = bool(db_config.get('fold_case', True))

    if db_type == 'sqlite':
        path = db_config.get('path', './warehouse.db')
        connection_string = f"sqlite:///{path}"
    elif db_type in ('postgresql', 'db2'):
        driver = 'postgresql' if db_type == 'postgresql' else 'ibm_db_sa'
        default_port = 5432 if db_type == 'postgresql' else 50000
        host = db_config.get('host', 'localhost')
        port = db_config.get('port', default_port)
        name = db_config.get('name', 'warehouse')
        user = db_config.get('user', '')
        password = db_config.get('password')
        if password is None and db_config.get('password_env'):
            password = os.environ.get(db_config['password_env'], '')
        connection_string = f"{driver}://{user}:{password or ''}@{host}:{port}/{name}"
    else:
        raise ValueError(f"Unsupported database type: {db_type}")

    return Database(connection_string, fold_case=fold_case)


def get_sqlite_database(path: str = "./warehouse.db") -> Database:
    """
    Convenience function to create SQLite database.

    Args:
        path: Path to SQLite database file

    Returns:
        Database instance connected to SQLite
    """
    return Database(f"sqlite:///{path}")
