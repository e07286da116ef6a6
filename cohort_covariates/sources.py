"""
Extractors for the provisioned data sets.

- PEDW (Patient Episode Database for Wales): hospital diagnoses coded in
  ICD-10, dated by episode start and linked to subjects through spells.
  Preferred on same-day ties (priority 1).
- WLGP (Welsh Longitudinal General Practice): GP events coded in Read v2
  (priority 2).
- Cohort: the provisioned cohort table projected onto subject fields.
"""

from sqlalchemy import and_, select
from sqlalchemy.sql.selectable import Select

from .extract import ColumnMapping, as_from, extract_events, get_column, require_columns, union_events

PEDW_SOURCE = "PEDW"
PEDW_PRIORITY = 1
WLGP_SOURCE = "WLGP"
WLGP_PRIORITY = 2

# Raw column names in the provisioned tables
PEDW_KEY_COLUMNS = ("PROV_UNIT_CD", "SPELL_NUM_E")
PEDW_DIAG_COLUMNS = PEDW_KEY_COLUMNS + ("EPI_NUM", "DIAG_CD_123", "DIAG_CD_1234")
PEDW_EPISODE_COLUMNS = PEDW_KEY_COLUMNS + ("EPI_NUM", "EPI_STR_DT")
PEDW_SPELL_COLUMNS = ("ALF_E",) + PEDW_KEY_COLUMNS

WLGP_MAPPING = ColumnMapping(subject_id="ALF_E", code="EVENT_CD", event_date="EVENT_DT")

COHORT_COLUMNS = {
    "subject_id": "ALF_E",
    "sex": "GNDR_CD",
    "date_of_birth": "WOB",
    "study_start_date": "COHORT_START_DATE",
    "study_end_date": "COHORT_END_DATE",
}


def cohort_subjects(cohort) -> Select:
    """Project the provisioned cohort table onto the subject columns."""
    src = as_from(cohort)
    require_columns(src, list(COHORT_COLUMNS.values()), "cohort")
    return select(
        *(get_column(src, raw).label(name) for name, raw in COHORT_COLUMNS.items())
    )


def pedw_diagnoses(diag, episode, spell) -> Select:
    """
    Attach episode start dates and subject ids to PEDW diagnoses.

    Returns:
        Select with person_id, code_3, code_4 and episode_date per diagnosis
    """
    d = as_from(diag, "pedw_diag")
    e = as_from(episode, "pedw_episode")
    s = as_from(spell, "pedw_spell")
    require_columns(d, PEDW_DIAG_COLUMNS, "PEDW diagnosis")
    require_columns(e, PEDW_EPISODE_COLUMNS, "PEDW episode")
    require_columns(s, PEDW_SPELL_COLUMNS, "PEDW spell")

    def key(left, right, names):
        return and_(*(get_column(left, n) == get_column(right, n) for n in names))

    joined = (
        d.outerjoin(e, key(d, e, PEDW_KEY_COLUMNS + ("EPI_NUM",)))
        .outerjoin(s, key(d, s, PEDW_KEY_COLUMNS))
    )
    return select(
        get_column(s, "ALF_E").label("person_id"),
        get_column(d, "DIAG_CD_123").label("code_3"),
        get_column(d, "DIAG_CD_1234").label("code_4"),
        get_column(e, "EPI_STR_DT").label("episode_date"),
    ).select_from(joined)


def pedw_covariate_events(diag, episode, spell, codelist):
    """
    Hospital covariate events from 3- and 4-character ICD-10 diagnoses.

    Each code granularity is matched against the codelist separately and the
    results are combined with UNION ALL.
    """
    diagnoses = pedw_diagnoses(diag, episode, spell).subquery("pedw_diagnoses")
    return union_events([
        extract_events(
            diagnoses,
            codelist,
            ColumnMapping("person_id", code_field, "episode_date"),
            PEDW_SOURCE,
            PEDW_PRIORITY,
        )
        for code_field in ("code_3", "code_4")
    ])


def wlgp_covariate_events(event, codelist) -> Select:
    """Primary care covariate events from Read v2 coded GP events."""
    return extract_events(event, codelist, WLGP_MAPPING, WLGP_SOURCE, WLGP_PRIORITY)
