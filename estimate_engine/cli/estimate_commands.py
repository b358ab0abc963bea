"""
Estimate CLI Commands - Operator commands for stored estimates.

Provides command-line interface for:
- Showing an estimate the way a given actor sees it
- Recalculating materialized totals
- Verifying totals against line items
- Creating a new version from an existing estimate
"""
import click
import logging
from contextlib import contextmanager
from typing import Optional, Tuple

from estimate_engine.models import SessionLocal
from estimate_engine.domain.exceptions import DomainError
from estimate_engine.domain.services import EstimateService
from estimate_engine.infrastructure.permissions import RolePermissionChecker
from estimate_engine.infrastructure.repositories import RepositoryContext

logger = logging.getLogger(__name__)

tenant_option = click.option('--tenant', required=True, help='Tenant (organization) ID')


@contextmanager
def estimate_service(
    tenant: str,
    actor: Optional[str] = None,
    roles: Tuple[str, ...] = (),
):
    """Open a session and yield an EstimateService scoped to the tenant."""
    ctx = click.get_current_context()
    session_factory = (ctx.obj or {}).get('session_factory', SessionLocal)
    db = session_factory()
    try:
        checker = RolePermissionChecker(lambda actor_id: list(roles))
        yield EstimateService(db, RepositoryContext(tenant, actor), permission_checker=checker)
    except DomainError as e:
        logger.warning(f"{e.code}: {e.message}")
        raise click.ClickException(e.message)
    finally:
        db.close()


def _format_money(value) -> str:
    return f"{value:,.2f}"


@click.group()
def estimates():
    """Estimate management commands."""
    pass


@estimates.command()
@click.argument('estimate_id', type=int)
@tenant_option
@click.option('--actor', default=None, help='Actor to render the estimate for')
@click.option('--role', 'roles', multiple=True, help='Role of the actor (repeatable)')
def show(estimate_id: int, tenant: str, actor: Optional[str], roles: Tuple[str, ...]):
    """Show an estimate with its items as the actor would see it."""
    with estimate_service(tenant, actor, roles) as service:
        view = service.get_for_viewer(estimate_id, actor)

    click.echo(f"\nEstimate {view['id']} v{view['version']} (project {view['project_id']})")
    click.echo(f"Status: {view['status']}")
    click.echo(f"Client total: {_format_money(view['total_client_price'])}")
    if 'total_cost' in view:
        click.echo(f"Cost total:   {_format_money(view['total_cost'])}")
        click.echo(f"Margin:       {_format_money(view['margin'])} ({view['margin_percent']:.2f}%)")

    click.echo(f"\nItems ({len(view['items'])}):")
    for item in view['items']:
        line = (
            f"  [{item['kind']}] {item['name']}: {item['quantity']} {item['unit']} "
            f"x {item['unit_client_price']} = {_format_money(item['total_client_price'])}"
        )
        if 'total_cost' in item:
            line += f" (cost {_format_money(item['total_cost'])})"
        click.echo(line)


@estimates.command()
@click.argument('estimate_id', type=int)
@tenant_option
def recalculate(estimate_id: int, tenant: str):
    """Recompute estimate totals from its current items."""
    with estimate_service(tenant) as service:
        estimate = service.recalculate_totals(estimate_id)
        click.echo(click.style(f"✓ Recalculated estimate {estimate.id}", fg='green'))
        click.echo(f"  Cost:   {_format_money(estimate.total_cost)}")
        click.echo(f"  Client: {_format_money(estimate.total_client_price)}")
        click.echo(f"  Margin: {_format_money(estimate.margin)} ({estimate.margin_percent:.2f}%)")


@estimates.command()
@click.argument('estimate_id', type=int)
@tenant_option
def verify(estimate_id: int, tenant: str):
    """Check that stored totals match the line items."""
    with estimate_service(tenant) as service:
        is_valid, errors = service.verify_totals(estimate_id)

    if is_valid:
        click.echo(click.style(f"✓ Estimate {estimate_id} totals are consistent", fg='green'))
        return

    click.echo(click.style(f"✗ Estimate {estimate_id} has {len(errors)} inconsistencies", fg='red'))
    for error in errors:
        click.echo(f"  - {error}")
    raise click.exceptions.Exit(1)


@estimates.command('new-version')
@click.argument('estimate_id', type=int)
@tenant_option
def new_version(estimate_id: int, tenant: str):
    """Copy an estimate and its items into the project's next version."""
    with estimate_service(tenant) as service:
        clone = service.clone_as_new_version(estimate_id)
        click.echo(click.style(
            f"✓ Created estimate {clone.id} v{clone.version} from estimate {estimate_id}",
            fg='green'
        ))


# Register with main CLI if exists
def register_commands(cli):
    """Register estimate commands with main CLI."""
    for command in estimates.commands.values():
        cli.add_command(command)
