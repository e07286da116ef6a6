"""
Cohort Covariates - first-event covariates for a study cohort

This package extracts covariate events for a cohort from hospital (PEDW)
and primary care (WLGP) data, keeps the first event per subject and
phenotype within each subject's window, and writes one wide row per subject
back to the warehouse.
"""

__version__ = "0.1.0"

from .database import Database, create_engine_from_config
from .errors import (
    CovariateError,
    SchemaMismatchError,
    TableAlreadyExistsError,
    TypeConversionError,
    UnknownTypeConversionError,
)
from .identifiers import QualifiedIdentifier, resolve
from .config import ProjectConfig, load_project_config
from .extract import ColumnMapping, extract_events, union_events
from .aggregate import first_events, pivot_wider, restrict_to_window, aggregate
from .materialize import TableHandle, materialize, write_dataframe
from .pipeline import run_covariate_pipeline

__all__ = [
    "Database",
    "create_engine_from_config",
    "CovariateError",
    "SchemaMismatchError",
    "TableAlreadyExistsError",
    "TypeConversionError",
    "UnknownTypeConversionError",
    "QualifiedIdentifier",
    "resolve",
    "ProjectConfig",
    "load_project_config",
    "ColumnMapping",
    "extract_events",
    "union_events",
    "first_events",
    "pivot_wider",
    "restrict_to_window",
    "aggregate",
    "TableHandle",
    "materialize",
    "write_dataframe",
    "run_covariate_pipeline",
]
