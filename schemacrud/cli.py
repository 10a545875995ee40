"""
Command line tools: scan a database and generate starter schema files.

    schemacrud scan --connection reporting
    schemacrud generate --tables users,roles --output-dir schema/crud
"""
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from sqlalchemy import inspect

from schemacrud.core.config import get_settings
from schemacrud.database.session import get_engine
from schemacrud.services.schema_generator import CRUD_OPERATIONS, SchemaGenerator, write_schemas

app = typer.Typer(help="Schema tooling for the schemacrud engine.")


def _split(tables: Optional[str]) -> List[str]:
    return [name.strip() for name in (tables or "").split(",") if name.strip()]


# ---------------------------
# Commands
# ---------------------------
@app.command()
def scan(
    connection: Optional[str] = typer.Option(None, help="Connection name (default database when omitted)."),
):
    """List tables with their columns and foreign keys."""
    inspector = inspect(get_engine(connection))
    names = inspector.get_table_names()
    if not names:
        typer.echo("No tables found.")
        raise typer.Exit(1)

    for name in names:
        columns = [column["name"] for column in inspector.get_columns(name)]
        typer.echo(f"{name}: {', '.join(columns)}")
        for fk in inspector.get_foreign_keys(name):
            local = ", ".join(fk.get("constrained_columns") or [])
            remote = ", ".join(fk.get("referred_columns") or [])
            typer.echo(f"  {local} -> {fk.get('referred_table')}({remote})")


@app.command()
def generate(
    connection: Optional[str] = typer.Option(None, help="Connection name (default database when omitted)."),
    tables: Optional[str] = typer.Option(None, help="Comma-separated table names; all tables when omitted."),
    output_dir: Optional[Path] = typer.Option(None, help="Target directory (SCHEMA_PATH when omitted)."),
    no_create: bool = typer.Option(False, "--no-create", help="Leave out the create permission."),
    no_update: bool = typer.Option(False, "--no-update", help="Leave out the update permission."),
    no_delete: bool = typer.Option(False, "--no-delete", help="Leave out the delete permission."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace existing schema files."),
):
    """Write a {model}.json schema for each table."""
    skipped = {"create": no_create, "update": no_update, "delete": no_delete}
    operations = [op for op in CRUD_OPERATIONS if not skipped[op]]

    generator = SchemaGenerator(get_engine(connection), connection=connection, operations=operations)
    schemas = generator.generate(_split(tables) or None)
    if not schemas:
        typer.echo("No tables to generate.")
        raise typer.Exit(1)

    target = output_dir or Path(get_settings().SCHEMA_PATH)
    if connection:
        target = target / connection
    written = write_schemas(schemas, target, overwrite=overwrite)
    logger.info(f"{len(written)} of {len(schemas)} schema file(s) written to {target}")
    for path in written:
        typer.echo(f"Created: {path}")
    if len(written) < len(schemas):
        typer.echo(f"Skipped {len(schemas) - len(written)} existing file(s); pass --overwrite to replace them.")


if __name__ == "__main__":
    app()
