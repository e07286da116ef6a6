"""
Project configuration: schema names and the table names derived from them.

Configuration is an immutable value passed to each pipeline step; nothing
here is module-level mutable state.
"""

from dataclasses import dataclass, fields
from typing import Optional

import yaml


@dataclass(frozen=True)
class ProjectConfig:
    """
    Names of the schemas and tables used by a covariate project.

    Attributes:
        project_name: Prefix for project-owned tables
        schema_data: Read-only schema holding provisioned data sets
        schema_collab: Read/write collaboration schema for project tables
        schema_reference: Reference and look-up tables
        cohort_prefix: Prefix used in provisioned data-set table names
        codelist_dir: Directory holding codelist CSV files
    """
    project_name: str = "HDS_EXAMPLE"
    schema_data: str = "SAILWMCCV"
    schema_collab: str = "SAILWWMCCV"
    schema_reference: str = "SAILUKHDV"
    cohort_prefix: str = "C19_COHORT"
    codelist_dir: str = "codelists"

    # Cohort tables
    @property
    def tbl_cohort16(self) -> str:
        return f"{self.cohort_prefix}16"

    @property
    def tbl_cohort20(self) -> str:
        return f"{self.cohort_prefix}20"

    # Patient Episode Database for Wales (PEDW)
    @property
    def tbl_pedw_spell(self) -> str:
        return f"{self.cohort_prefix}_PEDW_SPELL"

    @property
    def tbl_pedw_diag(self) -> str:
        return f"{self.cohort_prefix}_PEDW_DIAG"

    @property
    def tbl_pedw_oper(self) -> str:
        return f"{self.cohort_prefix}_PEDW_OPER"

    @property
    def tbl_pedw_episode(self) -> str:
        return f"{self.cohort_prefix}_PEDW_EPISODE"

    @property
    def tbl_pedw_superspell(self) -> str:
        return f"{self.cohort_prefix}_PEDW_SUPERSPELL"

    # Outpatient Data-set for Wales (OPDW)
    @property
    def tbl_opdw(self) -> str:
        return f"{self.cohort_prefix}_OPDW_OUTPATIENTS"

    @property
    def tbl_opdw_diag(self) -> str:
        return f"{self.cohort_prefix}_OPDW_OUTPATIENTS_DIAG"

    @property
    def tbl_opdw_oper(self) -> str:
        return f"{self.cohort_prefix}_OPDW_OUTPATIENTS_OPER"

    # Emergency Department Data-set (EDDS)
    @property
    def tbl_edds(self) -> str:
        return f"{self.cohort_prefix}_EDDS_EDDS"

    # Welsh Longitudinal General Practice (WLGP)
    @property
    def tbl_wlgp_event(self) -> str:
        return f"{self.cohort_prefix}_WLGP_GP_EVENT_CLEANSED"

    # Welsh Demographic Service (WDS)
    @property
    def tbl_wdsd_per_res(self) -> str:
        return f"{self.cohort_prefix}_WDSD_PER_RESIDENCE_GPREG"

    # Project tables
    @property
    def tbl_proj_codelist_covariate_icd10(self) -> str:
        return f"{self.project_name}_CODELIST_COVARIATE_ICD10"

    @property
    def tbl_proj_codelist_covariate_readv2(self) -> str:
        return f"{self.project_name}_CODELIST_COVARIATE_READV2"

    @property
    def tbl_proj_cohort(self) -> str:
        return f"{self.project_name}_COHORT"

    @property
    def tbl_proj_cohort_covariate(self) -> str:
        return f"{self.project_name}_COHORT_COVARIATE"


def project_config_from_dict(values: Optional[dict]) -> ProjectConfig:
    """Build a ProjectConfig, rejecting keys it does not know about."""
    values = values or {}
    known = {f.name for f in fields(ProjectConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown project config keys: {', '.join(unknown)}")
    return ProjectConfig(**{k: str(v) for k, v in values.items()})


def load_project_config(config_path: str) -> ProjectConfig:
    """
    Load the project section of a YAML config file.

    Config file format:
        project:
          project_name: HDS_EXAMPLE
          schema_data: SAILWMCCV
          schema_collab: SAILWWMCCV
          schema_reference: SAILUKHDV
          cohort_prefix: C19_COHORT
          codelist_dir: ./codelists
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    return project_config_from_dict(config.get('project'))
