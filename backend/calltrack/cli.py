import asyncio
import logging

import typer

from calltrack.core.config import settings
from calltrack.core.database import Base, SessionLocal, engine
from calltrack.core.security import create_access_token
from calltrack.services.sweeper import Sweeper
from calltrack.services.twilio_client import build_gateway

app = typer.Typer(help="Call lifecycle tracker maintenance commands.")


@app.command()
def init_db():
    """Create missing tables (use alembic for upgrades)."""
    Base.metadata.create_all(bind=engine)
    typer.echo("Tables created")


@app.command()
def sweep(stale_after: int = typer.Option(None, help="Override the staleness threshold in seconds.")):
    """Run one reconciliation sweep and print its report."""
    logging.basicConfig(level=settings.log_level.upper())
    run_settings = settings
    if stale_after is not None:
        run_settings = settings.model_copy(update={"stale_after_seconds": stale_after})
    gateway = build_gateway(run_settings)
    sweeper = Sweeper(SessionLocal, run_settings, transcript_provider=gateway, call_provider=gateway)
    report = asyncio.run(sweeper.sweep())
    typer.echo(report.model_dump_json(indent=2))


@app.command()
def issue_token(subject: str = "admin", expires_minutes: int = typer.Option(None)):
    """Print an admin bearer token for the /api/admin endpoints."""
    typer.echo(create_access_token(subject, role="ADMIN", expires_minutes=expires_minutes))


if __name__ == "__main__":
    app()
