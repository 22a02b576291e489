"""Database Commands - Schema bootstrap for local development"""

import asyncio

import typer
from sqlalchemy.exc import OperationalError

from forum.config.settings import Settings
from forum.infra.database import Database

from ..utils.formatting import print_error, print_success, print_warning

app = typer.Typer(name="db", help="Database schema commands")


async def _init(settings: Settings) -> None:
    database = Database(settings)
    try:
        await database.create_all()
    finally:
        await database.close()


@app.command("init")
def init_db(ctx: typer.Context):
    """🗄️ Create the jobs table"""
    settings: Settings = ctx.obj

    if settings.environment == "production":
        print_warning("Use `alembic upgrade head` to manage the production schema")
        raise typer.Exit(1)

    try:
        asyncio.run(_init(settings))
    except (OperationalError, OSError) as e:
        print_error(f"Could not reach the database: {e}")
        raise typer.Exit(1) from None

    print_success("Jobs table ready")
