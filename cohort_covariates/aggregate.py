"""
First-event covariates per subject and phenotype.

The aggregation is built as one composed query:
1. Union canonical events from every source
2. Keep events between the subject's date of birth and study start
   (both bounds inclusive)
3. Keep the earliest event per (subject, phenotype), breaking ties by
   source priority, then code
4. Pivot to one row per subject with flag/date/code/source columns per
   phenotype
5. Left join onto the full subject list so every subject has a row

Nothing runs until the result is materialized or collected.
"""

from typing import Iterable, Sequence

from sqlalchemy import Integer, case, func, literal, select
from sqlalchemy.sql.selectable import Select

from .extract import as_from, get_column, require_columns, union_events

SUBJECT_COLUMNS = ("subject_id", "date_of_birth", "study_start_date")

# Suffixes of the per-phenotype covariate columns
COVARIATE_FIELDS = ("flag", "date", "code", "source")


def covariate_columns(phenotype: str) -> list[str]:
    """Names of the wide columns generated for one phenotype."""
    return [f"{phenotype}_{suffix}" for suffix in COVARIATE_FIELDS]


def _unique(phenotypes: Iterable[str]) -> list[str]:
    seen = []
    for phenotype in phenotypes:
        if not isinstance(phenotype, str) or not phenotype:
            raise ValueError(f"Invalid phenotype label: {phenotype!r}")
        if phenotype not in seen:
            seen.append(phenotype)
    return seen


def restrict_to_window(events, subjects) -> Select:
    """
    Keep events dated within each subject's window.

    Args:
        events: Union of canonical events
        subjects: Relation with subject_id, date_of_birth, study_start_date

    Returns:
        Select of the event columns for events with
        date_of_birth <= event_date <= study_start_date
    """
    ev = as_from(events, "events")
    subj = as_from(subjects, "subjects")
    require_columns(subj, SUBJECT_COLUMNS, "subjects")

    event_date = ev.c.event_date
    return (
        select(ev)
        .join_from(ev, subj, ev.c.subject_id == get_column(subj, "subject_id"))
        .where(
            event_date >= get_column(subj, "date_of_birth"),
            event_date <= get_column(subj, "study_start_date"),
        )
    )


def first_events(events) -> Select:
    """
    Keep the first event per (subject_id, phenotype).

    Events are ordered by event date, then source priority (lower first),
    then code. Source name is a last resort so rows identical on all three
    still resolve to a single, stable survivor.
    """
    ev = as_from(events, "windowed")
    row_num = func.row_number().over(
        partition_by=(ev.c.subject_id, ev.c.phenotype),
        order_by=(ev.c.event_date, ev.c.source_priority, ev.c.code, ev.c.source_name),
    )
    ranked = select(ev, row_num.label("row_num")).subquery("ranked")

    return select(
        ranked.c.subject_id,
        ranked.c.phenotype,
        ranked.c.event_date,
        ranked.c.code,
        ranked.c.source_name,
        literal(1, Integer).label("flag"),
    ).where(ranked.c.row_num == 1)


def pivot_wider(first, phenotypes: Sequence[str]) -> Select:
    """
    Reshape first events to one row per subject.

    Each phenotype contributes `<phenotype>_flag`, `<phenotype>_date`,
    `<phenotype>_code` and `<phenotype>_source`. Since at most one event
    survives per (subject, phenotype), MAX over a CASE picks that event.
    """
    fe = as_from(first, "first_events")
    columns = [fe.c.subject_id]
    for phenotype in _unique(phenotypes):
        matches = fe.c.phenotype == phenotype
        values = (fe.c.flag, fe.c.event_date, fe.c.code, fe.c.source_name)
        for name, value in zip(covariate_columns(phenotype), values):
            columns.append(func.max(case((matches, value))).label(name))

    return select(*columns).group_by(fe.c.subject_id)


def aggregate(event_queries: Sequence, subjects, phenotypes: Sequence[str]) -> Select:
    """
    Build the wide covariate query.

    Args:
        event_queries: Event queries from the extractors
        subjects: Relation with subject_id, date_of_birth, study_start_date
        phenotypes: Phenotypes to generate columns for, usually every label
            present in the codelists

    Returns:
        Select with subject_id and four columns per phenotype, one row per
        subject
    """
    event_queries = list(event_queries)
    if not event_queries:
        raise ValueError("At least one event query is required")

    subj = as_from(subjects, "subjects")
    require_columns(subj, SUBJECT_COLUMNS, "subjects")

    events = union_events(event_queries)
    windowed = restrict_to_window(events, subj)
    wide = pivot_wider(first_events(windowed), phenotypes).subquery("covariates")

    subject_id = get_column(subj, "subject_id")
    covariates = [col for col in wide.c if col.key != "subject_id"]
    return (
        select(subject_id.label("subject_id"), *covariates)
        .select_from(subj.outerjoin(wide, subject_id == wide.c.subject_id))
    )

