#!/usr/bin/env python3
"""
CLI for the Estimate Engine.

Usage:
    python cli.py init-db
    python cli.py show 42 --tenant acme --actor u-1 --role owner
    python cli.py verify 42 --tenant acme
    python cli.py serve --port 8000

Commands:
    init-db       Create the database tables
    show          Display an estimate as a given actor sees it
    recalculate   Recompute estimate totals from its items
    verify        Check stored totals against the items
    new-version   Clone an estimate into the next version
    serve         Start the API server
"""
import click
import logging

from estimate_engine import __version__
from estimate_engine.config import get_config
from estimate_engine.cli import register_commands

# Configure logging
logging.basicConfig(
    level=get_config().log_level,
    format=get_config().log_format
)
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx):
    """Estimate Engine CLI.

    Inspect, verify and version construction estimates stored in the
    configured database.
    """
    ctx.ensure_object(dict)


@cli.command('init-db')
def init_db_command():
    """Create all tables in the configured database."""
    from estimate_engine.models import init_db

    init_db()
    click.echo(click.style(f"✓ Database ready at {get_config().database_url}", fg='green'))


@cli.command()
@click.option('--port', type=int, default=8000, help='Server port')
@click.option('--host', default='0.0.0.0', help='Server host')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(port: int, host: str, reload: bool):
    """Start the API server.

    Runs the FastAPI application with uvicorn.

    Example:
        python cli.py serve --port 8000 --reload
    """
    import uvicorn

    click.echo(click.style('Estimate Engine - API Server', fg='cyan', bold=True))
    click.echo(f"Starting server at http://{host}:{port}")
    click.echo("Press CTRL+C to stop\n")

    uvicorn.run(
        "estimate_engine.main:app",
        host=host,
        port=port,
        reload=reload
    )


register_commands(cli)


if __name__ == '__main__':
    cli()
