"""Cellar command line: serve the API and manage the inventory database."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from src.cellar.api.utils.app_startup import configure_logging
from src.cellar.core.errors import CellarError
from src.cellar.core.services.database.db_session import DbSessionService
from src.cellar.core.services.imports import ImportPipeline
from src.cellar.entities import registry
from src.cellar.runtime.context import get_config

console = Console()

app = typer.Typer(
    help="Cellar inventory API - server and maintenance commands",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _database() -> DbSessionService:
    config = get_config()
    return DbSessionService(config.database, config.app.environment)


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default from config)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port (default from config)"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "src.cellar.api.http.app:create_app",
        factory=True,
        host=host or config.app.host,
        port=port or config.app.port,
        reload=reload,
        access_log=False,  # request logging middleware covers this
    )


@app.command("init-db")
def init_db() -> None:
    """Create every registered table that does not exist yet."""
    database = _database()
    try:
        database.create_all(registry)
    finally:
        database.dispose()
    console.print(f"[green]✅ Tables ready for: {', '.join(registry.names())}[/green]")


@app.command("import-products")
def import_products(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help=".xlsx or .csv file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate only, store nothing"),
) -> None:
    """Import products from a spreadsheet into the configured database."""
    config = get_config()
    content = file.read_bytes()
    if len(content) > config.imports.max_bytes:
        console.print(f"[red]❌ {file.name} exceeds {config.imports.max_bytes} bytes[/red]")
        raise typer.Exit(code=1)

    database = _database()
    try:
        database.create_all(registry)
        with database.session_scope() as session:
            report = ImportPipeline(session, registry, "product", config.imports).run(
                file.name, content, dry_run=dry_run
            )
    except CellarError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(code=1) from e
    finally:
        database.dispose()

    verb = "Would import" if dry_run else "Imported"
    console.print(
        f"[green]{verb} {report.imported} of {report.total_rows} rows from {report.filename}[/green]"
    )
    if report.ignored_columns:
        console.print(f"[yellow]Ignored columns: {', '.join(report.ignored_columns)}[/yellow]")
    if report.rejected:
        table = Table(title=f"Rejected rows ({len(report.rejected)})")
        table.add_column("Row", style="cyan", justify="right")
        table.add_column("Field", style="magenta")
        table.add_column("Reason", style="yellow")
        table.add_column("Message")
        for rejected in report.rejected:
            for error in rejected.errors:
                table.add_row(str(rejected.row), error.field, error.reason, error.message)
        console.print(table)
        raise typer.Exit(code=2)


@app.command()
def schema() -> None:
    """Show the registered entities and their fields."""
    for entity in registry.schemas():
        table = Table(title=f"{entity.display_name} (/{entity.route}, table {entity.table_name})")
        table.add_column("Field", style="cyan")
        table.add_column("Type", style="green")
        table.add_column("Required")
        table.add_column("Constraints", style="yellow")
        table.add_column("Aliases", style="magenta")
        for spec in entity.fields:
            constraints = [
                f"{label}={value}"
                for label, value in (
                    ("min_length", spec.min_length),
                    ("max_length", spec.max_length),
                    ("min", spec.minimum),
                    ("max", spec.maximum),
                )
                if value is not None
            ]
            if spec.choices:
                constraints.append("one of " + "/".join(spec.choices))
            if spec.unique:
                constraints.append("unique")
            if not spec.writable:
                constraints.append("read-only")
            table.add_row(
                spec.name,
                spec.type.value,
                "yes" if spec.required else "",
                ", ".join(constraints),
                ", ".join(spec.aliases),
            )
        console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
