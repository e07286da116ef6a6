"""
Canonical clinical events from a single source.

Each source names its subject, code and date columns differently. An
extractor projects one code field of a source onto the canonical
event columns, keeps only rows whose code appears in a codelist and tags
every row with the source name and priority. Nothing here executes SQL.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import Integer, String, func, literal, select, union_all
from sqlalchemy.sql.selectable import CompoundSelect, FromClause, Select

from .errors import SchemaMismatchError

EVENT_COLUMNS = (
    "subject_id",
    "phenotype",
    "event_date",
    "code",
    "source_name",
    "source_priority",
)

CODELIST_COLUMNS = ("code", "phenotype")


@dataclass(frozen=True)
class ColumnMapping:
    """
    Source columns supplying the canonical event fields.

    Attributes:
        subject_id: Column identifying the subject
        code: Column holding the clinical code
        event_date: Column holding the event date
    """
    subject_id: str
    code: str
    event_date: str

    def columns(self) -> tuple[str, str, str]:
        return (self.subject_id, self.code, self.event_date)


def as_from(relation, name: Optional[str] = None) -> FromClause:
    """Use tables and handles directly; wrap selects as named subqueries."""
    relation = getattr(relation, "relation", relation)
    if isinstance(relation, FromClause):
        return relation
    return relation.subquery(name)


def get_column(relation: FromClause, name: str):
    """
    Look up a column by name, falling back to a case-insensitive match.

    Reflection on some dialects reports upper-case warehouse columns in
    lower case.
    """
    if name in relation.c:
        return relation.c[name]
    for key in relation.c.keys():
        if key.lower() == name.lower():
            return relation.c[key]
    raise KeyError(name)


def require_columns(relation: FromClause, required: Sequence[str], source: str) -> None:
    """Raise SchemaMismatchError if the relation lacks any required column."""
    available = {key.lower() for key in relation.c.keys()}
    missing = [name for name in required if name.lower() not in available]
    if missing:
        raise SchemaMismatchError(source, missing=missing)


def extract_events(
    source,
    codelist,
    mapping: ColumnMapping,
    source_name: str,
    source_priority: int,
    code_width: Optional[int] = None,
) -> Select:
    """
    Build the event query for one code field of a source.

    Args:
        source: Table, subquery or select holding raw source rows
        codelist: Relation with `code` and `phenotype` columns
        mapping: Which source columns hold subject, code and date
        source_name: Label attached to every event
        source_priority: Tie-break rank for same-day events (lower wins)
        code_width: Truncate source codes to this many characters before
            matching, for coding systems standardized to a fixed width

    Returns:
        Select yielding subject_id, phenotype, event_date, code,
        source_name, source_priority
    """
    if isinstance(source_priority, bool) or not isinstance(source_priority, int) or source_priority < 1:
        raise ValueError(f"source_priority must be a positive integer, got {source_priority!r}")

    src = as_from(source)
    cl = as_from(codelist)
    require_columns(src, mapping.columns(), f"source {source_name}")
    require_columns(cl, CODELIST_COLUMNS, f"codelist for {source_name}")

    code = get_column(src, mapping.code)
    if code_width is not None:
        code = func.substr(code, 1, code_width)

    events = select(
        get_column(src, mapping.subject_id).label("subject_id"),
        code.label("code"),
        get_column(src, mapping.event_date).label("event_date"),
    ).subquery()

    return (
        select(
            events.c.subject_id,
            get_column(cl, "phenotype").label("phenotype"),
            events.c.event_date,
            events.c.code,
            literal(source_name, String).label("source_name"),
            literal(source_priority, Integer).label("source_priority"),
        )
        .join_from(events, cl, events.c.code == get_column(cl, "code"))
    )


def _canonical(query, position: int):
    # UNION ALL matches columns by position, so reorder anything out of line
    # and nested compounds are wrapped because SQLite rejects parenthesized members
    keys = list(query.selected_columns.keys())
    if keys == list(EVENT_COLUMNS) and not isinstance(query, CompoundSelect):
        return query
    missing = [name for name in EVENT_COLUMNS if name not in keys]
    extra = [name for name in keys if name not in EVENT_COLUMNS]
    if missing or extra:
        raise SchemaMismatchError(f"event query {position}", missing=missing, extra=extra)
    sub = query.subquery()
    return select(*(sub.c[name] for name in EVENT_COLUMNS))


def union_events(event_queries: Sequence[Select]):
    """Combine event queries with UNION ALL."""
    queries = [_canonical(query, i) for i, query in enumerate(event_queries)]
    if not queries:
        raise ValueError("At least one event query is required")
    if len(queries) == 1:
        return queries[0]
    return union_all(*queries)
