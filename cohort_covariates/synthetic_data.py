"""
Synthetic warehouse data for testing the covariate pipeline.

Generates a cohort with:
- Ages skewed toward older adults
- GP events (Read v2) and hospital diagnoses (ICD-10), a share of which
  carry covariate codes
- Events before birth are never produced; events after study start are, so
  the study window has something to exclude

Values are produced as text, the way they arrive in CSV extracts, together
with the column schema used to type them on load.
"""

import json
import logging
import os
from datetime import date, timedelta
from typing import Optional

import numpy as np
import pandas as pd

from .codelists import COVARIATE_CODELISTS
from .config import ProjectConfig
from .database import Database, get_sqlite_database
from .loader import apply_column_schema
from .materialize import write_dataframe

logger = logging.getLogger(__name__)


COHORT_SCHEMA = {
    "ALF_E": "bigint",
    "GNDR_CD": "character",
    "WOB": "date",
    "COHORT_START_DATE": "date",
    "COHORT_END_DATE": "date",
}

WLGP_EVENT_SCHEMA = {
    "ALF_E": "bigint",
    "EVENT_CD": "character",
    "EVENT_VAL": "numeric",
    "EVENT_DT": "date",
}

PEDW_SPELL_SCHEMA = {
    "ALF_E": "bigint",
    "PROV_UNIT_CD": "character",
    "SPELL_NUM_E": "bigint",
    "ADMIS_DT": "date",
}

PEDW_EPISODE_SCHEMA = {
    "PROV_UNIT_CD": "character",
    "SPELL_NUM_E": "bigint",
    "EPI_NUM": "integer",
    "EPI_STR_DT": "date",
}

PEDW_DIAG_SCHEMA = {
    "PROV_UNIT_CD": "character",
    "SPELL_NUM_E": "bigint",
    "EPI_NUM": "integer",
    "DIAG_NUM": "integer",
    "DIAG_CD_123": "character",
    "DIAG_CD_1234": "character",
}

# Read v2 codes as recorded in GP events (5 characters) per phenotype
READV2_CODES = {
    "hypertension": ["G20..", "G201.", "G202.", "G24.."],
    "diabetes": ["C10..", "C10E.", "C10F.", "C108."],
}
READV2_OTHER_CODES = ["H33..", "N245.", "1371.", "F45..", "M24.."]

# (3-character, 4-character) ICD-10 diagnosis pairs per phenotype
ICD10_CODES = {
    "hypertension": [("I10", "I10X"), ("I11", "I119"), ("I15", "I159")],
    "diabetes": [("E10", "E109"), ("E11", "E119"), ("E14", "E149")],
}
ICD10_OTHER_CODES = [("J45", "J459"), ("K21", "K219"), ("M54", "M545"), ("R07", "R074")]

# Codelist entries matching the generated codes; Read v2 entries carry the
# term code suffix and are truncated to 5 characters when read
CODELIST_CODES = {
    "icd10": {
        "hypertension": ["I10", "I11", "I119", "I15"],
        "diabetes": ["E10", "E11", "E119", "E14"],
    },
    "readv2": {
        "hypertension": ["G20..00", "G201.00", "G202.00", "G24..00"],
        "diabetes": ["C10..00", "C10E.00", "C10F.00", "C108.00"],
    },
}

PROVIDER_UNITS = ["7A1", "7A2", "7A3", "7A4"]


class SyntheticDataGenerator:
    """
    Generate synthetic provisioned data sets for testing.

    Attributes (after generate()):
        cohort: Cohort table rows
        wlgp_events: GP event rows
        pedw_spells, pedw_episodes, pedw_diagnoses: Hospital rows
    """

    def __init__(
        self,
        n_subjects: int = 1000,
        study_start: date = date(2020, 1, 1),
        study_end: date = date(2022, 12, 31),
        gp_events_per_subject: float = 6.0,
        spells_per_subject: float = 1.0,
        covariate_share: float = 0.3,
        seed: Optional[int] = 42
    ):
        """
        Initialize the generator.

        Args:
            n_subjects: Number of cohort members
            study_start: Cohort start date for every subject
            study_end: Cohort end date; events are generated up to this date
            gp_events_per_subject: Mean GP events per subject
            spells_per_subject: Mean hospital spells per subject
            covariate_share: Probability an event carries a covariate code
            seed: Random seed for reproducibility
        """
        self.n_subjects = n_subjects
        self.study_start = study_start
        self.study_end = study_end
        self.gp_events_per_subject = gp_events_per_subject
        self.spells_per_subject = spells_per_subject
        self.covariate_share = covariate_share
        self.rng = np.random.default_rng(seed)

        self.cohort: list[dict] = []
        self.wlgp_events: list[dict] = []
        self.pedw_spells: list[dict] = []
        self.pedw_episodes: list[dict] = []
        self.pedw_diagnoses: list[dict] = []

        self._spell_num = 1

    def generate(self) -> None:
        """Generate all synthetic data."""
        self._generate_cohort()
        self._generate_wlgp_events()
        self._generate_pedw()

    def _random_date(self, start: date, end: date) -> date:
        span = max((end - start).days, 0)
        return start + timedelta(days=int(self.rng.integers(0, span + 1)))

    def _pick(self, options: list):
        return options[int(self.rng.integers(0, len(options)))]

    def _is_covariate(self) -> bool:
        return self.rng.random() < self.covariate_share

    def _generate_cohort(self) -> None:
        """Generate cohort members with realistic ages at study start."""
        ages = self.rng.gamma(shape=4, scale=12, size=self.n_subjects)
        ages = np.clip(ages + 5, 0, 100)

        for i in range(self.n_subjects):
            birth = self.study_start - timedelta(days=int(ages[i] * 365.25))
            self.cohort.append({
                "ALF_E": str(1_000_000 + i),
                "GNDR_CD": self._pick(["1", "2"]),
                "WOB": birth.isoformat(),
                "COHORT_START_DATE": self.study_start.isoformat(),
                "COHORT_END_DATE": self.study_end.isoformat(),
            })

    def _generate_wlgp_events(self) -> None:
        """Generate GP events between birth and study end."""
        for subject in self.cohort:
            birth = date.fromisoformat(subject["WOB"])
            for _ in range(self.rng.poisson(self.gp_events_per_subject)):
                if self._is_covariate():
                    code = self._pick(READV2_CODES[self._pick(sorted(READV2_CODES))])
                else:
                    code = self._pick(READV2_OTHER_CODES)
                self.wlgp_events.append({
                    "ALF_E": subject["ALF_E"],
                    "EVENT_CD": code,
                    "EVENT_VAL": f"{self.rng.normal(100, 15):.1f}",
                    "EVENT_DT": self._random_date(birth, self.study_end).isoformat(),
                })

    def _generate_pedw(self) -> None:
        """Generate hospital spells, their episodes and diagnoses."""
        for subject in self.cohort:
            birth = date.fromisoformat(subject["WOB"])
            for _ in range(self.rng.poisson(self.spells_per_subject)):
                unit = self._pick(PROVIDER_UNITS)
                spell_num = str(self._spell_num)
                self._spell_num += 1
                admission = self._random_date(birth, self.study_end)
                self.pedw_spells.append({
                    "ALF_E": subject["ALF_E"],
                    "PROV_UNIT_CD": unit,
                    "SPELL_NUM_E": spell_num,
                    "ADMIS_DT": admission.isoformat(),
                })

                for epi_num in range(1, int(self.rng.integers(1, 4)) + 1):
                    episode_start = admission + timedelta(days=epi_num - 1)
                    self.pedw_episodes.append({
                        "PROV_UNIT_CD": unit,
                        "SPELL_NUM_E": spell_num,
                        "EPI_NUM": str(epi_num),
                        "EPI_STR_DT": episode_start.isoformat(),
                    })
                    for diag_num in range(1, int(self.rng.integers(1, 4)) + 1):
                        if self._is_covariate():
                            code_3, code_4 = self._pick(ICD10_CODES[self._pick(sorted(ICD10_CODES))])
                        else:
                            code_3, code_4 = self._pick(ICD10_OTHER_CODES)
                        self.pedw_diagnoses.append({
                            "PROV_UNIT_CD": unit,
                            "SPELL_NUM_E": spell_num,
                            "EPI_NUM": str(epi_num),
                            "DIAG_NUM": str(diag_num),
                            "DIAG_CD_123": code_3,
                            "DIAG_CD_1234": code_4,
                        })

    def tables(self, config: ProjectConfig) -> dict[str, tuple[pd.DataFrame, dict]]:
        """Text-valued frames and column schemas keyed by table name."""
        def frame(rows, schema):
            return pd.DataFrame(rows, columns=list(schema))

        return {
            config.tbl_cohort20: (frame(self.cohort, COHORT_SCHEMA), COHORT_SCHEMA),
            config.tbl_wlgp_event: (frame(self.wlgp_events, WLGP_EVENT_SCHEMA), WLGP_EVENT_SCHEMA),
            config.tbl_pedw_spell: (frame(self.pedw_spells, PEDW_SPELL_SCHEMA), PEDW_SPELL_SCHEMA),
            config.tbl_pedw_episode: (frame(self.pedw_episodes, PEDW_EPISODE_SCHEMA), PEDW_EPISODE_SCHEMA),
            config.tbl_pedw_diag: (frame(self.pedw_diagnoses, PEDW_DIAG_SCHEMA), PEDW_DIAG_SCHEMA),
        }

    def write_csvs(self, data_dir: str, schema_dir: str, config: ProjectConfig) -> list[str]:
        """
        Write each table as a CSV with a matching JSON column schema.

        Returns:
            Paths of the CSV files written
        """
        os.makedirs(data_dir, exist_ok=True)
        os.makedirs(schema_dir, exist_ok=True)

        written = []
        for name, (frame, schema) in self.tables(config).items():
            csv_path = os.path.join(data_dir, f"{name}.csv")
            frame.to_csv(csv_path, index=False)
            with open(os.path.join(schema_dir, f"{name}.json"), 'w') as f:
                json.dump(schema, f, indent=2)
            written.append(csv_path)
        return written

    def save_to_database(
        self,
        db: Database,
        config: ProjectConfig,
        overwrite: bool = True
    ) -> dict[str, int]:
        """
        Type the generated data and write it to the data schema.

        Args:
            db: Database instance to save to
            config: Project config naming the schema and tables
            overwrite: Replace existing tables

        Returns:
            Dictionary with counts of inserted records per table
        """
        db.ensure_schema(config.schema_data)

        counts = {}
        for name, (frame, schema) in self.tables(config).items():
            typed = apply_column_schema(frame, schema, name)
            write_dataframe(db, typed, name, config.schema_data, overwrite=overwrite)
            counts[name] = len(typed)
        return counts

    def get_summary(self) -> dict:
        """Get summary statistics of generated data."""
        ages = [
            (self.study_start - date.fromisoformat(row["WOB"])).days / 365.25
            for row in self.cohort
        ]
        return {
            "n_subjects": len(self.cohort),
            "n_gp_events": len(self.wlgp_events),
            "n_spells": len(self.pedw_spells),
            "n_diagnoses": len(self.pedw_diagnoses),
            "age_mean": float(np.mean(ages)) if ages else 0.0,
            "age_min": float(np.min(ages)) if ages else 0.0,
            "age_max": float(np.max(ages)) if ages else 0.0,
        }


def write_codelists(codelist_dir: str) -> list[str]:
    """
    Write codelist CSVs matching the codes the generator produces.

    File names follow COVARIATE_CODELISTS.

    Returns:
        Paths of the files written
    """
    os.makedirs(codelist_dir, exist_ok=True)

    written = []
    for system, files in COVARIATE_CODELISTS.items():
        for phenotype, filename in files.items():
            path = os.path.join(codelist_dir, filename)
            codes = CODELIST_CODES[system][phenotype]
            pd.DataFrame({"code": codes, "description": phenotype}).to_csv(path, index=False)
            written.append(path)
    return written


def generate_synthetic_data(
    db_path: str = "./warehouse.db",
    n_subjects: int = 1000,
    seed: int = 42,
    config: Optional[ProjectConfig] = None
) -> Database:
    """
    Convenience function to generate synthetic data into a SQLite warehouse.

    Args:
        db_path: Path to SQLite database file
        n_subjects: Number of cohort members
        seed: Random seed
        config: Project config (defaults to ProjectConfig())

    Returns:
        Database instance with synthetic data loaded
    """
    config = config or ProjectConfig()
    db = get_sqlite_database(db_path)

    generator = SyntheticDataGenerator(n_subjects=n_subjects, seed=seed)
    generator.generate()
    counts = generator.save_to_database(db, config)
    summary = generator.get_summary()

    logger.info("Generated synthetic data:")
    for table, count in counts.items():
        logger.info("  %s: %d rows", table, count)
    logger.info("  Age range: %.1f - %.1f years", summary["age_min"], summary["age_max"])

    return db
