"""
Covariate codelists.

A codelist maps clinical codes in one coding system to a phenotype label.
Codelists are kept as CSV files (one file per phenotype and coding system,
with at least a `code` column), read as text and standardized per coding
system before being written to the warehouse for joining.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import pandas as pd
from sqlalchemy import distinct, select

from .database import Database
from .errors import SchemaMismatchError
from .extract import as_from, get_column, require_columns

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodingSystem:
    """
    A clinical coding system.

    Attributes:
        name: Short name used in table names and the coding_system column
        code_width: Codes are truncated to this many characters, if set
    """
    name: str
    code_width: Optional[int] = None

    def standardize(self, codes: pd.Series) -> pd.Series:
        codes = codes.str.strip()
        if self.code_width is not None:
            codes = codes.str.slice(0, self.code_width)
        return codes


ICD10 = CodingSystem("icd10")
# Read codes are standardized to 5 characters (the term code suffix is dropped)
READV2 = CodingSystem("readv2", code_width=5)

CODING_SYSTEMS = {system.name: system for system in (ICD10, READV2)}

# Phenotype -> codelist file, per coding system
COVARIATE_CODELISTS = {
    "icd10": {
        "hypertension": "hypertension_icd10.csv",
        "diabetes": "diabetes_icd10.csv",
    },
    "readv2": {
        "hypertension": "hypertension_readv2.csv",
        "diabetes": "diabetes_readv2.csv",
    },
}


def get_coding_system(name: str) -> CodingSystem:
    """Look up a coding system by name."""
    try:
        return CODING_SYSTEMS[name]
    except KeyError:
        raise ValueError(
            f"Unknown coding system: {name}. Available: {', '.join(CODING_SYSTEMS)}"
        ) from None


def read_codelist(path: str, phenotype: str, coding_system: CodingSystem) -> pd.DataFrame:
    """
    Read one codelist file.

    Args:
        path: CSV file with a `code` column (other columns are kept)
        phenotype: Phenotype label attached to every row
        coding_system: Coding system used to standardize codes

    Returns:
        DataFrame with standardized codes plus phenotype and coding_system
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    if "code" not in df.columns:
        raise SchemaMismatchError(os.path.basename(path), missing=["code"])

    df["code"] = coding_system.standardize(df["code"])
    return df[df["code"] != ""].assign(
        phenotype=phenotype,
        coding_system=coding_system.name,
    )


def read_codelists(
    files: dict[str, str],
    coding_system: CodingSystem,
    codelist_dir: str = "codelists",
) -> pd.DataFrame:
    """
    Read and combine the codelists of one coding system.

    Codes are de-duplicated per phenotype after standardization. A code
    listed under more than one phenotype is kept for each of them, so its
    events count towards every such phenotype.

    Args:
        files: Mapping of phenotype label to file name
        coding_system: Coding system of every file
        codelist_dir: Directory holding the files

    Returns:
        DataFrame with columns code, phenotype, coding_system
    """
    frames = [
        read_codelist(os.path.join(codelist_dir, filename), phenotype, coding_system)
        for phenotype, filename in files.items()
    ]
    if not frames:
        return pd.DataFrame(columns=["code", "phenotype", "coding_system"])

    codelist = pd.concat(frames, ignore_index=True)[["code", "phenotype", "coding_system"]]
    codelist = codelist.drop_duplicates(["code", "phenotype"]).reset_index(drop=True)

    shared = codelist.groupby("code")["phenotype"].nunique()
    shared = shared[shared > 1]
    if len(shared) > 0:
        logger.warning(
            "%s codes mapped to more than one phenotype: %s",
            coding_system.name,
            ", ".join(sorted(shared.index)),
        )

    return codelist


def list_phenotypes(*codelists: pd.DataFrame) -> list[str]:
    """Sorted distinct phenotype labels across codelist frames."""
    labels = set()
    for codelist in codelists:
        labels.update(codelist["phenotype"].dropna().unique())
    return sorted(labels)


def codelist_phenotypes(db: Database, *codelists) -> list[str]:
    """
    Sorted distinct phenotype labels across codelist tables.

    Executes one query per codelist.
    """
    labels = set()
    with db.engine.connect() as conn:
        for codelist in codelists:
            cl = as_from(codelist)
            require_columns(cl, ("phenotype",), "codelist")
            phenotype = get_column(cl, "phenotype")
            query = select(distinct(phenotype)).where(phenotype.is_not(None))
            labels.update(conn.execute(query).scalars())
    return sorted(labels)
