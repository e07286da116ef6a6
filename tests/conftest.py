"""
Shared fixtures for the cohort covariate tests.

SQLite stands in for the warehouse: in memory for query tests, on disk
under a temporary directory where schemas or separate sessions matter.

Run with: pytest tests/ -v
"""

import pandas as pd
import pytest
from sqlalchemy import event


@pytest.fixture
def memory_db():
    """In-memory warehouse."""
    from cohort_covariates.database import Database

    db = Database("sqlite://")
    yield db
    db.engine.dispose()


@pytest.fixture
def temp_db_path(tmp_path):
    """Path of a SQLite warehouse file in a temporary directory."""
    return str(tmp_path / "warehouse.db")


@pytest.fixture
def file_db(temp_db_path):
    """File-backed warehouse."""
    from cohort_covariates.database import get_sqlite_database

    db = get_sqlite_database(temp_db_path)
    yield db
    db.engine.dispose()


@pytest.fixture
def statements(memory_db):
    """Statements executed against the in-memory warehouse, in order."""
    executed = []

    def record(conn, cursor, statement, parameters, context, executemany):
        executed.append(statement)

    event.listen(memory_db.engine, "before_cursor_execute", record)
    yield executed
    event.remove(memory_db.engine, "before_cursor_execute", record)


def _ddl(executed):
    return [
        s for s in executed
        if s.lstrip().upper().startswith(("CREATE", "DROP"))
    ]


def _write_table(db, name, rows, schema=None):
    from cohort_covariates.materialize import write_dataframe

    return write_dataframe(db, pd.DataFrame(rows), name, schema, overwrite=True)


@pytest.fixture
def ddl_statements():
    """Filter recorded statements down to CREATE and DROP."""
    return _ddl


@pytest.fixture
def write_table():
    """Write a list of row dicts to a table, replacing it if present."""
    return _write_table
