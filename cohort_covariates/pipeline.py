"""
Cohort covariate extraction.

Steps:
1. Load ICD-10 and Read v2 covariate codelists into the collaboration schema
2. Project the provisioned cohort into a project cohort table
3. Extract covariate events from PEDW (hospital) and WLGP (GP)
4. Combine events, restrict to each subject's window and keep the first
   event per phenotype
5. Pivot to a wide table with one row per cohort subject and persist it
"""

import logging
from typing import Optional

from sqlalchemy.sql.selectable import Select

from .aggregate import aggregate
from .codelists import COVARIATE_CODELISTS, codelist_phenotypes, get_coding_system, read_codelists
from .config import ProjectConfig
from .database import Database
from .materialize import TableHandle, materialize, write_dataframe
from .sources import cohort_subjects, pedw_covariate_events, wlgp_covariate_events

logger = logging.getLogger(__name__)


def ensure_project_schemas(db: Database, config: ProjectConfig) -> None:
    """Create the data, collaboration and reference schemas if missing."""
    for schema in (config.schema_data, config.schema_collab, config.schema_reference):
        db.ensure_schema(schema)


def codelist_tables(config: ProjectConfig) -> dict[str, str]:
    """Collaboration-schema table name per coding system."""
    return {
        "icd10": config.tbl_proj_codelist_covariate_icd10,
        "readv2": config.tbl_proj_codelist_covariate_readv2,
    }


def load_covariate_codelists(
    db: Database,
    config: ProjectConfig,
    codelist_dir: Optional[str] = None,
    overwrite: bool = True,
) -> dict[str, TableHandle]:
    """
    Read the covariate codelists and write them to the warehouse.

    Args:
        db: Target database
        config: Project config
        codelist_dir: Directory of codelist CSVs (default: config.codelist_dir)
        overwrite: Replace existing codelist tables

    Returns:
        Codelist table handle per coding system
    """
    codelist_dir = codelist_dir or config.codelist_dir
    tables = codelist_tables(config)

    handles = {}
    for system_name, files in COVARIATE_CODELISTS.items():
        codelist = read_codelists(files, get_coding_system(system_name), codelist_dir)
        handles[system_name] = write_dataframe(
            db, codelist, tables[system_name], config.schema_collab, overwrite=overwrite
        )
        logger.info("Loaded %d %s codelist entries", len(codelist), system_name)
    return handles


def prepare_cohort(db: Database, config: ProjectConfig, overwrite: bool = True) -> TableHandle:
    """Materialize the project cohort table from the provisioned cohort."""
    cohort = db.table(config.tbl_cohort20, config.schema_data)
    return materialize(
        cohort_subjects(cohort),
        db,
        config.tbl_proj_cohort,
        config.schema_collab,
        overwrite=overwrite,
    )


def build_covariate_query(
    db: Database,
    config: ProjectConfig,
    cohort,
    codelists: dict[str, TableHandle],
) -> Select:
    """
    Compose the wide covariate query without running it.

    Reads the distinct phenotype labels from the codelist tables to decide
    which columns to generate.
    """
    pedw_events = pedw_covariate_events(
        db.table(config.tbl_pedw_diag, config.schema_data),
        db.table(config.tbl_pedw_episode, config.schema_data),
        db.table(config.tbl_pedw_spell, config.schema_data),
        codelists["icd10"],
    )
    wlgp_events = wlgp_covariate_events(
        db.table(config.tbl_wlgp_event, config.schema_data),
        codelists["readv2"],
    )

    phenotypes = codelist_phenotypes(db, *codelists.values())
    logger.info("Covariate phenotypes: %s", ", ".join(phenotypes) or "(none)")
    return aggregate([pedw_events, wlgp_events], cohort, phenotypes)


def run_covariate_pipeline(
    db: Database,
    config: ProjectConfig,
    codelist_dir: Optional[str] = None,
    overwrite: bool = True,
) -> TableHandle:
    """
    Run the full covariate extraction.

    Args:
        db: Warehouse holding the provisioned data sets
        config: Project config naming schemas and tables
        codelist_dir: Directory of codelist CSVs (default: config.codelist_dir)
        overwrite: Replace project tables from a previous run

    Returns:
        Handle to the materialized cohort covariate table
    """
    logger.info("Step 1: loading codelists")
    codelists = load_covariate_codelists(db, config, codelist_dir, overwrite=overwrite)

    logger.info("Step 2: preparing cohort")
    cohort = prepare_cohort(db, config, overwrite=overwrite)

    logger.info("Step 3: building covariate query")
    covariates = build_covariate_query(db, config, cohort, codelists)

    logger.info("Step 4: writing covariate table")
    return materialize(
        covariates,
        db,
        config.tbl_proj_cohort_covariate,
        config.schema_collab,
        overwrite=overwrite,
    )
