"""CLI commands for FORJ API."""

import sys

import click
import uvicorn

from forj_api.auth.api_key import create_api_key
from forj_api.auth.policy import Role
from forj_api.core import ForjCore
from forj_api.db.seed import init_db, seed_api_keys
from forj_api.db.session import get_engine, get_session_factory
from forj_api.settings import get_settings


@click.group()
def cli():
    """FORJ API CLI."""


@cli.command("init-db")
def init_db_command():
    """Create all tables (development; use Alembic elsewhere)."""
    init_db(get_engine())
    click.echo("✓ Database schema created.")


@cli.command()
def seed():
    """Create demo API keys for each role."""
    db = get_session_factory()()
    try:
        created = seed_api_keys(db)
    finally:
        db.close()
    if not created:
        click.echo("Demo keys already exist.")
    for actor_id, role, raw_key in created:
        click.echo(f"{role:<9} {actor_id:<12} {raw_key}")


@cli.command("create-key")
@click.option("--actor-id", required=True)
@click.option("--actor-name", required=True)
@click.option("--role", required=True, type=click.Choice([role.value for role in Role], case_sensitive=False))
@click.option("--label", default=None)
def create_key(actor_id, actor_name, role, label):
    """Create an API key and print it once."""
    db = get_session_factory()()
    try:
        api_key, raw_key = create_api_key(db, actor_id, actor_name, Role(role.upper()), label)
        db.commit()
    finally:
        db.close()
    click.echo(f"✓ API key {api_key.prefix}… created for {actor_id} ({role.upper()})")
    click.echo(raw_key)


@cli.command("verify-audit")
def verify_audit():
    """Replay the audit chain; exit status 1 if it is broken."""
    result = ForjCore(get_session_factory(), get_settings()).verify_audit_integrity()
    if result.valid:
        click.echo(f"✓ Audit chain intact ({result.length} entries).")
        return
    click.echo(
        f"✗ Audit chain broken at index {result.broken_at_index}: {result.reason}",
        err=True,
    )
    sys.exit(1)


@cli.command()
def sweep():
    """Run the expiry sweep once."""
    result = ForjCore(get_session_factory(), get_settings()).sweep_expired()
    click.echo(f"✓ Expired {result['licenses']} licenses and {result['certificates']} certificates.")


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST).")
@click.option("--port", default=None, type=int, help="Bind port (defaults to API_PORT).")
@click.option("--reload", is_flag=True, help="Restart on code changes (development only).")
def serve(host, port, reload):
    """Run the HTTP API."""
    settings = get_settings()
    if reload and not settings.is_development:
        raise click.UsageError("--reload is only available in development.")
    uvicorn.run(
        "forj_api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
        reload=reload,
    )


if __name__ == "__main__":
    cli()
