"""Operator CLI for accessgate."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import click

from accessgate.config import Settings, load_config
from accessgate.deployment import DeploymentOptions
from accessgate.errors import AccessControlError
from accessgate.service import AccessControl, build_access_control
from accessgate.storage.database import close_db, init_db

logger = logging.getLogger("accessgate.cli")


def _run(settings: Settings, work: Callable[[AccessControl], Awaitable[Any]]) -> Any:
    async def _main() -> Any:
        await init_db(settings.storage.database_url, echo=settings.storage.echo)
        try:
            return await work(build_access_control(settings))
        finally:
            await close_db()

    try:
        return asyncio.run(_main())
    except AccessControlError as exc:
        logger.debug("Command failed", exc_info=True)
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to accessgate.yaml")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """accessgate: tenant RBAC and license deployment."""
    settings = load_config(config_path)
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    ctx.obj = settings


@cli.command("init-db")
@click.pass_obj
def init_db_command(settings: Settings) -> None:
    """Create the schema in the configured database."""

    async def work(_: AccessControl) -> None:
        return None

    _run(settings, work)
    click.echo("Database initialized.")


@cli.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant id")
@click.option("--dry-run", is_flag=True, help="Report without writing")
@click.option("--feature", "feature_ids", multiple=True, help="Restrict to these feature ids")
@click.pass_obj
def sync(settings: Settings, tenant_id: str, dry_run: bool, feature_ids: tuple[str, ...]) -> None:
    """Reconcile a tenant's permissions with its license grants."""
    options = DeploymentOptions(dry_run=dry_run, specific_feature_ids=list(feature_ids) or None)
    summary = _run(settings, lambda ac: ac.sync_tenant_permissions(tenant_id, options))

    prefix = "[dry run] " if dry_run else ""
    click.echo(
        f"{prefix}Tenant {tenant_id}: {summary.features_processed} features deployed, "
        f"{summary.permissions_created} permissions created, "
        f"{summary.role_links_created} role links created, "
        f"{summary.permissions_removed} permissions removed"
    )
    for warning in summary.warnings:
        click.echo(f"  warning: {warning}")
    for error in summary.all_errors:
        click.echo(f"  error: {error}", err=True)
    if summary.all_errors:
        raise SystemExit(1)


@cli.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant id")
@click.pass_obj
def status(settings: Settings, tenant_id: str) -> None:
    """Show how far each granted feature has been deployed."""
    report = _run(settings, lambda ac: ac.get_deployment_status(tenant_id))

    click.echo(f"Tenant {tenant_id}: {'in sync' if report.in_sync else 'OUT OF SYNC'}")
    for feature in report.features:
        click.echo(
            f"  {feature.feature_code:<30} {feature.status:<9} {feature.state:<20} "
            f"{feature.deployed_count}/{feature.permission_count}"
            + (f" ({feature.conflicted_count} conflicts)" if feature.conflicted_count else "")
        )
    click.echo(
        f"Licensed features: {report.licensed_feature_count}, "
        f"missing permissions: {report.missing_permission_count}, "
        f"orphaned permissions: {report.orphaned_permission_count}"
    )


@cli.command()
@click.option("--user", "user_id", required=True, help="User id")
@click.option("--tenant", "tenant_id", required=True, help="Tenant id")
@click.option("--permission", "permissions", multiple=True, help="Permission code (repeatable)")
@click.option("--feature", "feature_code", default=None, help="Feature code")
@click.option("--surface", "surface_id", default=None, help="Surface id")
@click.pass_obj
def check(
    settings: Settings,
    user_id: str,
    tenant_id: str,
    permissions: tuple[str, ...],
    feature_code: str | None,
    surface_id: str | None,
) -> None:
    """Evaluate one gate for a principal. Exits 1 when denied."""
    chosen = [bool(permissions), feature_code is not None, surface_id is not None]
    if sum(chosen) != 1:
        raise click.UsageError("Give exactly one of --permission, --feature or --surface")

    async def work(ac: AccessControl):  # type: ignore[no-untyped-def]
        if permissions:
            gate = ac.gates.with_permission(list(permissions))
        elif feature_code is not None:
            gate = ac.gates.with_license(feature_code)
        else:
            gate = ac.gates.for_surface(surface_id or "")
        return await gate.check(user_id, tenant_id)

    decision = _run(settings, work)
    if decision.allowed:
        click.echo("ALLOWED")
        return
    click.echo(f"DENIED: {decision.reason}")
    raise SystemExit(1)


@cli.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant id")
@click.option("--limit", default=50, show_default=True, help="Number of entries")
@click.option("--offset", default=0, help="Entries to skip")
@click.pass_obj
def audit(settings: Settings, tenant_id: str, limit: int, offset: int) -> None:
    """Print the deployment audit trail as JSON lines."""
    entries = _run(settings, lambda ac: ac.audit.get_audit_log(tenant_id, limit, offset))
    for entry in entries:
        click.echo(json.dumps(entry, sort_keys=True))


if __name__ == "__main__":
    cli()
