"""
Command-line interface for the cohort covariate pipeline.

Usage:
    cohort-covariates generate-data --database ./warehouse.db --subjects 1000
    cohort-covariates load-data --database ./warehouse.db --input-dir dev/data --schema-dir dev/schema
    cohort-covariates run-covariates --database ./warehouse.db --codelist-dir ./codelists
    cohort-covariates inspect --database ./warehouse.db --table HDS_EXAMPLE_COHORT_COVARIATE
    cohort-covariates create-schema --config config.yaml --name SAILWWMCCV
"""

import logging
from typing import Optional

import click
import pandas as pd

from . import __version__
from .config import ProjectConfig, load_project_config
from .database import Database, create_engine_from_config, get_sqlite_database
from .errors import CovariateError


def _open(database: Optional[str], config: Optional[str]) -> tuple[Database, ProjectConfig]:
    if config:
        return create_engine_from_config(config), load_project_config(config)
    if database:
        return get_sqlite_database(database), ProjectConfig()
    raise click.UsageError("Either --database or --config is required")


def warehouse_options(command):
    command = click.option('--config', '-c', default=None,
                           help='YAML config with database and project sections')(command)
    command = click.option('--database', '-d', default=None,
                           help='Path to a SQLite warehouse')(command)
    return command


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Log debug output, including rendered SQL')
def main(verbose: bool):
    """Cohort Covariates - first-event covariates from clinical warehouse data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )


@main.command()
@warehouse_options
@click.option('--name', '-n', required=True, help='Schema name')
@click.option('--replace', is_flag=True, help='Drop and recreate the schema (discards its tables)')
def create_schema(database: str, config: str, name: str, replace: bool):
    """Create a schema if it does not exist."""
    db, _ = _open(database, config)
    created = db.ensure_schema(name, replace=replace)
    click.echo(f"Schema {name}: {'created' if created else 'already exists'}")


@main.command()
@warehouse_options
@click.option('--subjects', '-n', default=1000, help='Number of cohort subjects to generate')
@click.option('--seed', '-s', default=42, help='Random seed for reproducibility')
@click.option('--codelist-dir', default=None, help='Also write matching codelists here')
@click.option('--csv-dir', default=None, help='Write CSV/JSON extracts here instead of loading them')
def generate_data(database: str, config: str, subjects: int, seed: int,
                  codelist_dir: str, csv_dir: str):
    """Generate synthetic cohort, GP and hospital data."""
    from .synthetic_data import SyntheticDataGenerator, write_codelists

    generator = SyntheticDataGenerator(n_subjects=subjects, seed=seed)
    generator.generate()

    if csv_dir:
        project = load_project_config(config) if config else ProjectConfig()
        written = generator.write_csvs(f"{csv_dir}/data", f"{csv_dir}/schema", project)
        click.echo(f"Wrote {len(written)} extracts to: {csv_dir}")
    else:
        db, project = _open(database, config)
        counts = generator.save_to_database(db, project)
        click.echo("\nDatabase summary:")
        for table, count in counts.items():
            click.echo(f"  {table}: {count:,} records")

    if codelist_dir:
        written = write_codelists(codelist_dir)
        click.echo(f"Wrote {len(written)} codelists to: {codelist_dir}")


@main.command()
@warehouse_options
@click.option('--input-dir', '-i', required=True, help='Directory of CSV files')
@click.option('--schema-dir', '-s', required=True, help='Directory of JSON column schemas')
def load_data(database: str, config: str, input_dir: str, schema_dir: str):
    """Load CSV extracts into the data schema."""
    from .loader import import_csv_directory
    from .pipeline import ensure_project_schemas

    db, project = _open(database, config)
    try:
        ensure_project_schemas(db, project)
        counts = import_csv_directory(db, input_dir, schema_dir, project.schema_data)
    except CovariateError as e:
        raise click.ClickException(str(e))

    for table, count in counts.items():
        click.echo(f"Loaded {count:,} rows into {table}")


@main.command()
@warehouse_options
@click.option('--codelist-dir', default=None, help='Directory of codelist CSVs')
@click.option('--no-overwrite', is_flag=True, help='Fail if project tables already exist')
def run_covariates(database: str, config: str, codelist_dir: str, no_overwrite: bool):
    """Build the cohort covariate table."""
    from .pipeline import ensure_project_schemas, run_covariate_pipeline

    db, project = _open(database, config)
    try:
        ensure_project_schemas(db, project)
        handle = run_covariate_pipeline(db, project, codelist_dir, overwrite=not no_overwrite)
    except CovariateError as e:
        raise click.ClickException(str(e))

    click.echo(f"Wrote {handle.count():,} rows to {handle.identifier}")


@main.command()
@warehouse_options
@click.option('--table', '-t', default=None, help='Table name (default: cohort covariate table)')
@click.option('--schema', default=None, help='Schema name (default: collaboration schema)')
@click.option('--limit', '-l', default=20, help='Rows to show')
def inspect(database: str, config: str, table: str, schema: str, limit: int):
    """Show the first rows of a table."""
    from .materialize import table_handle

    db, project = _open(database, config)
    identifier = db.resolve(table or project.tbl_proj_cohort_covariate,
                            schema or project.schema_collab)
    if not db.table_exists(identifier):
        raise click.ClickException(f"Table {identifier} does not exist")

    frame = table_handle(db, identifier).collect(limit=limit)
    with pd.option_context('display.max_columns', None, 'display.width', 200):
        click.echo(frame.to_string(index=False))


if __name__ == '__main__':
    main()
