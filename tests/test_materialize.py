"""
Tests for materializing queries and managing schemas.
"""

import pandas as pd
import pytest
from sqlalchemy import literal, select


@pytest.fixture
def source(memory_db, write_table):
    return write_table(memory_db, "source", [
        {"ALF_E": 1, "EVENT_CD": "G20..", "EVENT_DT": "2019-06-01"},
        {"ALF_E": 2, "EVENT_CD": "C10E.", "EVENT_DT": "2018-02-03"},
    ])


class TestMaterialize:
    """Tests for persisting queries as tables."""

    def test_creates_table(self, memory_db, source):
        """Test that the handle points at a table with the query's rows."""
        from cohort_covariates.materialize import materialize

        handle = materialize(source.select(), memory_db, "copy")

        assert str(handle.identifier) == "COPY"
        assert handle.columns == ["ALF_E", "EVENT_CD", "EVENT_DT"]
        assert handle.count() == 2
        assert memory_db.table_exists(handle.identifier)

    def test_handle_feeds_further_queries(self, memory_db, source):
        from cohort_covariates.materialize import materialize

        handle = materialize(source, memory_db, "copy")
        query = select(handle.c.ALF_E).where(handle.c.EVENT_CD == "G20..")

        with memory_db.engine.connect() as conn:
            assert conn.execute(query).scalars().all() == [1]

    def test_collect(self, memory_db, source):
        from cohort_covariates.materialize import materialize

        frame = materialize(source, memory_db, "copy").collect()

        assert isinstance(frame, pd.DataFrame)
        assert sorted(frame["ALF_E"]) == [1, 2]
        assert str(frame.loc[frame["ALF_E"] == 2, "EVENT_DT"].iloc[0]) == "2018-02-03"

    def test_head(self, memory_db, source):
        from cohort_covariates.materialize import materialize

        handle = materialize(source, memory_db, "copy")

        assert len(handle.collect(limit=1)) == 1
        with memory_db.engine.connect() as conn:
            assert len(conn.execute(handle.head(1)).all()) == 1

    def test_existing_table_without_overwrite(self, memory_db, source, statements, ddl_statements):
        """Test that an existing target raises before any DDL runs."""
        from cohort_covariates.errors import TableAlreadyExistsError
        from cohort_covariates.materialize import materialize

        handle = materialize(source, memory_db, "copy")
        before = handle.collect()
        del statements[:]

        with pytest.raises(TableAlreadyExistsError, match="COPY"):
            materialize(select(literal(7).label("only")), memory_db, "copy")

        assert ddl_statements(statements) == []
        pd.testing.assert_frame_equal(before, handle.collect())

    def test_overwrite_replaces(self, memory_db, source):
        """Test that overwriting twice gives the same table."""
        from cohort_covariates.materialize import materialize

        first = materialize(source, memory_db, "copy", overwrite=True).collect()
        second = materialize(source, memory_db, "copy", overwrite=True).collect()

        pd.testing.assert_frame_equal(first, second)

    def test_overwrite_uses_new_query(self, memory_db, source):
        from cohort_covariates.materialize import materialize

        materialize(source, memory_db, "copy")
        handle = materialize(
            select(literal(7).label("only")), memory_db, "copy", overwrite=True
        )

        assert handle.columns == ["only"]
        assert handle.collect()["only"].tolist() == [7]

    def test_overwrite_drops_then_creates(self, memory_db, source, statements, ddl_statements):
        from cohort_covariates.materialize import materialize

        materialize(source, memory_db, "copy")
        del statements[:]

        materialize(source, memory_db, "copy", overwrite=True)

        ddl = ddl_statements(statements)
        assert [s.split()[0].upper() for s in ddl] == ["DROP", "CREATE"]

    def test_failed_overwrite_keeps_previous_table(self, file_db, write_table):
        """Test that a create that fails after the drop leaves the old table in place."""
        from sqlalchemy import column, table as table_clause
        from sqlalchemy.exc import OperationalError

        from cohort_covariates.materialize import materialize, table_handle

        source = write_table(file_db, "src", [{"A": 1}, {"A": 2}])
        before = materialize(source, file_db, "target").collect()

        with pytest.raises(OperationalError):
            materialize(
                select(table_clause("NO_SUCH_TABLE", column("x"))),
                file_db, "target", overwrite=True,
            )

        identifier = file_db.resolve("target")
        assert file_db.table_exists(identifier)
        pd.testing.assert_frame_equal(before, table_handle(file_db, identifier).collect())

    def test_temporary_table(self, memory_db, source):
        """Test that temporary tables drop the schema qualifier."""
        from cohort_covariates.materialize import materialize

        handle = materialize(source, memory_db, "scratch", schema="sailwwmccv", temporary=True)

        assert handle.identifier.schema is None
        assert handle.count() == 2

    def test_backing_query_rendered(self, memory_db, source):
        from cohort_covariates.materialize import materialize

        query = source.select().where(source.c.EVENT_CD == "G20..")

        handle = materialize(query, memory_db, "copy")

        assert "'G20..'" in handle.backing_query

    def test_into_schema(self, file_db, write_table):
        from cohort_covariates.materialize import materialize

        file_db.ensure_schema("sailwwmccv")
        source = write_table(file_db, "source", [{"A": 1}, {"A": 2}])

        handle = materialize(source, file_db, "copy", schema="sailwwmccv")

        assert str(handle.identifier) == "SAILWWMCCV.COPY"
        assert handle.count() == 2


class TestRenderSql:
    """Tests for statement rendering."""

    def test_literals_inlined(self, memory_db, source):
        from cohort_covariates.materialize import render_sql

        sql = render_sql(source.select().where(source.c.ALF_E == 2), memory_db.engine.dialect)

        assert sql.startswith("SELECT")
        assert "= 2" in sql

    def test_create_table_as(self):
        from sqlalchemy.dialects import sqlite

        from cohort_covariates.identifiers import resolve
        from cohort_covariates.materialize import CreateTableAs

        target = resolve("scratch", "sail").to_table()
        statement = CreateTableAs(target, select(literal(1).label("x")), temporary=True)

        sql = str(statement.compile(dialect=sqlite.dialect()))

        assert sql.startswith('CREATE TEMPORARY TABLE "SAIL"."SCRATCH" AS SELECT')

    def test_unknown_relation(self, memory_db):
        from cohort_covariates.materialize import render_sql

        with pytest.raises(TypeError):
            render_sql("SELECT 1", memory_db.engine.dialect)


class TestWriteDataframe:
    """Tests for writing data frames."""

    def test_append(self, memory_db):
        from cohort_covariates.materialize import write_dataframe

        frame = pd.DataFrame({"code": ["I10"], "phenotype": ["hypertension"]})
        write_dataframe(memory_db, frame, "codes")

        handle = write_dataframe(memory_db, frame, "codes", append=True)

        assert handle.count() == 2

    def test_existing_without_flags(self, memory_db):
        from cohort_covariates.errors import TableAlreadyExistsError
        from cohort_covariates.materialize import write_dataframe

        frame = pd.DataFrame({"code": ["I10"]})
        write_dataframe(memory_db, frame, "codes")

        with pytest.raises(TableAlreadyExistsError):
            write_dataframe(memory_db, frame, "codes")

    def test_overwrite_and_append_exclusive(self, memory_db):
        from cohort_covariates.materialize import write_dataframe

        with pytest.raises(ValueError):
            write_dataframe(memory_db, pd.DataFrame({"a": [1]}), "t", overwrite=True, append=True)


class TestSchemas:
    """Tests for schema lifecycle."""

    def test_ensure_schema_idempotent(self, file_db):
        assert file_db.ensure_schema("sailwwmccv") is True
        assert file_db.ensure_schema("sailwwmccv") is False
        assert file_db.schema_exists("SAILWWMCCV")

    def test_replace_discards_tables(self, file_db, write_table):
        """Test that replace=True drops tables inside the schema."""
        file_db.ensure_schema("sailwwmccv")
        write_table(file_db, "codes", [{"code": "I10"}], schema="sailwwmccv")
        identifier = file_db.resolve("codes", "sailwwmccv")
        assert file_db.table_exists(identifier)

        assert file_db.ensure_schema("sailwwmccv", replace=True) is True

        assert not file_db.table_exists(identifier)
        assert file_db.schema_exists("sailwwmccv")

    def test_schema_seen_by_later_session(self, temp_db_path, write_table):
        """Test that a new Database on the same file sees earlier schemas."""
        from cohort_covariates.database import get_sqlite_database

        first = get_sqlite_database(temp_db_path)
        first.ensure_schema("sailwmccv")
        write_table(first, "cohort", [{"ALF_E": 1}], schema="sailwmccv")
        first.engine.dispose()

        second = get_sqlite_database(temp_db_path)

        assert second.ensure_schema("sailwmccv") is False
        assert second.get_table_counts([second.resolve("cohort", "sailwmccv")]) == {"SAILWMCCV.COHORT": 1}
        second.engine.dispose()

    def test_in_memory_schema(self, memory_db, write_table):
        assert memory_db.ensure_schema("sailwmccv") is True

        handle = write_table(memory_db, "cohort", [{"ALF_E": 1}], schema="sailwmccv")

        assert handle.count() == 1

    def test_table_counts_missing_table(self, memory_db):
        counts = memory_db.get_table_counts([memory_db.resolve("absent")])

        assert counts == {"ABSENT": 0}

    def test_reflect_table(self, memory_db, source):
        table = memory_db.table("source")

        assert [c.name for c in table.columns] == ["ALF_E", "EVENT_CD", "EVENT_DT"]
