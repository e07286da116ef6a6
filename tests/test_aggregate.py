"""
Tests for first-event aggregation and the wide covariate table.
"""

import pandas as pd
import pytest

MAPPING_ARGS = ("ALF_E", "CODE", "EVENT_DT")


@pytest.fixture
def codelist(memory_db, write_table):
    return write_table(memory_db, "codelist", [
        {"code": "I10", "phenotype": "hypertension"},
        {"code": "I109", "phenotype": "hypertension"},
        {"code": "I11", "phenotype": "hypertension"},
        {"code": "E11", "phenotype": "diabetes"},
    ])


@pytest.fixture
def subjects(memory_db, write_table):
    """Three subjects born 1980-01-01 with study start 2020-01-01."""
    return write_table(memory_db, "subjects", [
        {"subject_id": subject_id, "date_of_birth": "1980-01-01", "study_start_date": "2020-01-01"}
        for subject_id in (1, 2, 3)
    ])


@pytest.fixture
def build(memory_db, write_table, codelist, subjects):
    """Write source tables, aggregate them and return the collected frame."""
    from cohort_covariates.aggregate import aggregate
    from cohort_covariates.extract import ColumnMapping, extract_events
    from cohort_covariates.materialize import materialize

    def run(sources, phenotypes=("hypertension", "diabetes"), table="covariates", subject_rows=None):
        cohort = subjects
        if subject_rows is not None:
            cohort = write_table(memory_db, "scenario_subjects", subject_rows)
        queries = []
        for name, priority, rows in sources:
            source = write_table(memory_db, f"src_{name}", rows)
            queries.append(extract_events(source, codelist, ColumnMapping(*MAPPING_ARGS), name, priority))
        query = aggregate(queries, cohort, list(phenotypes))
        frame = materialize(query, memory_db, table, overwrite=True).collect()
        return frame.set_index("subject_id").sort_index()

    return run


def event(subject_id, code, event_dt):
    return {"ALF_E": subject_id, "CODE": code, "EVENT_DT": event_dt}


class TestFirstEvent:
    """Tests for choosing one event per subject and phenotype."""

    def test_same_day_tie_prefers_priority(self, build):
        """Test the same-day tie between two sources."""
        frame = build(
            [
                ("A", 1, [event(1, "I10", "2020-01-05")]),
                ("B", 2, [event(1, "I109", "2020-01-05")]),
            ],
            subject_rows=[
                {"subject_id": 1, "date_of_birth": "1960-01-01", "study_start_date": "2020-03-01"},
            ],
        )

        row = frame.loc[1]
        assert row["hypertension_flag"] == 1
        assert str(row["hypertension_date"]) == "2020-01-05"
        assert row["hypertension_code"] == "I10"
        assert row["hypertension_source"] == "A"

    def test_lower_priority_wins_regardless_of_order(self, build):
        frame = build([
            ("B", 2, [event(1, "I10", "2015-06-01")]),
            ("A", 1, [event(1, "I109", "2015-06-01")]),
        ])

        assert frame.loc[1, "hypertension_source"] == "A"
        assert frame.loc[1, "hypertension_code"] == "I109"

    def test_same_priority_tie_prefers_lower_code(self, build):
        frame = build([
            ("A", 1, [event(1, "I11", "2015-06-01"), event(1, "I10", "2015-06-01")]),
        ])

        assert frame.loc[1, "hypertension_code"] == "I10"

    def test_earliest_date_wins(self, build):
        frame = build([
            ("A", 1, [event(1, "I10", "2012-03-01")]),
            ("B", 2, [event(1, "I109", "2011-03-01")]),
        ])

        assert str(frame.loc[1, "hypertension_date"]) == "2011-03-01"
        assert frame.loc[1, "hypertension_source"] == "B"

    def test_one_event_per_phenotype(self, build):
        """Test that each phenotype is decided independently."""
        frame = build([
            ("A", 1, [event(1, "I10", "2012-03-01"), event(1, "E11", "2005-03-01")]),
        ])

        assert str(frame.loc[1, "hypertension_date"]) == "2012-03-01"
        assert str(frame.loc[1, "diabetes_date"]) == "2005-03-01"
        assert frame.loc[1, "diabetes_flag"] == 1

    def test_first_events_keeps_one_row(self, memory_db, write_table):
        """Test first_events on its own."""
        from cohort_covariates.aggregate import first_events

        events = write_table(memory_db, "events", [
            {"subject_id": 1, "phenotype": "hypertension", "event_date": "2015-01-01",
             "code": "I10", "source_name": "B", "source_priority": 1},
            {"subject_id": 1, "phenotype": "hypertension", "event_date": "2015-01-01",
             "code": "I10", "source_name": "A", "source_priority": 1},
        ])

        with memory_db.engine.connect() as conn:
            rows = conn.execute(first_events(events)).all()

        assert [tuple(r) for r in rows] == [(1, "hypertension", "2015-01-01", "I10", "A", 1)]


class TestWindow:
    """Tests for restricting events to date of birth through study start."""

    def test_bounds_inclusive(self, build):
        frame = build([
            ("A", 1, [
                event(1, "I10", "1979-12-31"),
                event(1, "I10", "2020-01-02"),
                event(2, "I10", "1980-01-01"),
                event(3, "I10", "2020-01-01"),
            ]),
        ])

        assert pd.isna(frame.loc[1, "hypertension_flag"])
        assert str(frame.loc[2, "hypertension_date"]) == "1980-01-01"
        assert str(frame.loc[3, "hypertension_date"]) == "2020-01-01"

    def test_events_for_unknown_subjects_dropped(self, build):
        frame = build([("A", 1, [event(99, "I10", "2015-01-01")])])

        assert 99 not in frame.index
        assert frame["hypertension_flag"].isna().all()

    def test_window_from_subject_dates(self, memory_db, write_table):
        """Test restrict_to_window on its own."""
        from cohort_covariates.aggregate import restrict_to_window

        subjects = write_table(memory_db, "window_subjects", [
            {"subject_id": 1, "date_of_birth": "2000-05-05", "study_start_date": "2001-05-05"},
        ])
        events = write_table(memory_db, "window_events", [
            {"subject_id": 1, "phenotype": "x", "event_date": day,
             "code": "C", "source_name": "A", "source_priority": 1}
            for day in ("2000-05-04", "2000-05-05", "2001-05-05", "2001-05-06")
        ])

        with memory_db.engine.connect() as conn:
            dates = sorted(r.event_date for r in conn.execute(restrict_to_window(events, subjects)))

        assert dates == ["2000-05-05", "2001-05-05"]


class TestWideTable:
    """Tests for the shape of the wide covariate table."""

    def test_one_row_per_subject(self, build):
        frame = build([
            ("A", 1, [event(1, "I10", "2015-01-01"), event(1, "I11", "2016-01-01"),
                      event(2, "E11", "2016-01-01")]),
            ("B", 2, [event(1, "I10", "2014-01-01")]),
        ])

        assert list(frame.index) == [1, 2, 3]

    def test_subject_without_events_has_null_row(self, build):
        frame = build([("A", 1, [event(1, "I10", "2015-01-01")])])

        row = frame.loc[3]
        assert row[["hypertension_flag", "hypertension_date", "hypertension_code",
                    "hypertension_source"]].isna().all()

    def test_column_layout(self, build):
        """Test four columns per listed phenotype and none for unlisted ones."""
        frame = build([("A", 1, [event(1, "E11", "2015-01-01")])], phenotypes=["hypertension"])

        assert list(frame.columns) == [
            "hypertension_flag", "hypertension_date", "hypertension_code", "hypertension_source",
        ]

    def test_phenotype_without_events_gives_null_columns(self, build):
        frame = build(
            [("A", 1, [event(1, "I10", "2015-01-01")])],
            phenotypes=["hypertension", "asthma"],
        )

        assert frame["asthma_flag"].isna().all()
        assert frame["asthma_source"].isna().all()

    def test_duplicate_phenotypes_collapsed(self, build):
        frame = build(
            [("A", 1, [event(1, "I10", "2015-01-01")])],
            phenotypes=["hypertension", "hypertension"],
        )

        assert len(frame.columns) == 4

    def test_deterministic(self, build):
        """Test that repeated runs over the same inputs agree."""
        sources = [
            ("A", 1, [event(1, "I10", "2015-01-01"), event(2, "I11", "2015-01-01")]),
            ("B", 2, [event(1, "I109", "2015-01-01"), event(2, "I10", "2015-01-01")]),
        ]

        first = build(sources, table="run_1")
        second = build(sources, table="run_2")

        pd.testing.assert_frame_equal(first, second)


class TestAggregateErrors:
    """Tests for invalid aggregation inputs."""

    def test_no_event_queries(self, subjects):
        from cohort_covariates.aggregate import aggregate

        with pytest.raises(ValueError):
            aggregate([], subjects, ["hypertension"])

    def test_subjects_missing_window_columns(self, memory_db, write_table, codelist):
        from cohort_covariates.aggregate import aggregate
        from cohort_covariates.errors import SchemaMismatchError
        from cohort_covariates.extract import ColumnMapping, extract_events

        subjects = write_table(memory_db, "bare_subjects", [{"subject_id": 1}])
        source = write_table(memory_db, "src", [event(1, "I10", "2015-01-01")])
        query = extract_events(source, codelist, ColumnMapping(*MAPPING_ARGS), "A", 1)

        with pytest.raises(SchemaMismatchError) as excinfo:
            aggregate([query], subjects, ["hypertension"])

        assert excinfo.value.missing == ["date_of_birth", "study_start_date"]

    @pytest.mark.parametrize("label", ["", None])
    def test_invalid_phenotype_label(self, memory_db, write_table, codelist, subjects, label):
        from cohort_covariates.aggregate import aggregate
        from cohort_covariates.extract import ColumnMapping, extract_events

        source = write_table(memory_db, "src", [event(1, "I10", "2015-01-01")])
        query = extract_events(source, codelist, ColumnMapping(*MAPPING_ARGS), "A", 1)

        with pytest.raises(ValueError):
            aggregate([query], subjects, [label])
