"""Tests for the operator CLI."""

from __future__ import annotations

import asyncio
import json

import pytest
from click.testing import CliRunner

from accessgate.cli import cli
from accessgate.storage.database import close_db, init_db
from accessgate.storage.sql_repositories import sql_unit_of_work


async def _seed(database_url: str) -> dict[str, str]:
    await init_db(database_url)
    try:
        async with sql_unit_of_work() as uow:
            tenant = await uow.tenants.create(name="Acme", slug="acme")
            staff = await uow.roles.create(tenant.id, "staff", "role_staff")
            await uow.assignments.assign("u1", staff.id, tenant.id)
            feature = await uow.features.create("reports")
            template = await uow.features.add_permission_template(feature.id, "reports:export")
            await uow.features.add_role_template(template.id, "staff")
            await uow.grants.grant(tenant.id, feature.id)
            await uow.surfaces.register("admin/reports")
            await uow.commit()
            return {"tenant": tenant.id, "feature": feature.id}
    finally:
        await close_db()


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("ACCESSGATE_STORAGE__DATABASE_URL", url)
    return asyncio.run(_seed(url))


@pytest.fixture
def runner():
    return CliRunner()


def test_init_db(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ACCESSGATE_STORAGE__DATABASE_URL", f"sqlite:///{tmp_path / 'fresh.db'}")
    result = runner.invoke(cli, ["init-db"])
    assert result.exit_code == 0
    assert "Database initialized." in result.output
    assert (tmp_path / "fresh.db").exists()


def test_sync_then_status(runner, env):
    result = runner.invoke(cli, ["status", "--tenant", env["tenant"]])
    assert result.exit_code == 0
    assert "OUT OF SYNC" in result.output

    result = runner.invoke(cli, ["sync", "--tenant", env["tenant"]])
    assert result.exit_code == 0
    assert "1 permissions created" in result.output

    result = runner.invoke(cli, ["status", "--tenant", env["tenant"]])
    assert result.exit_code == 0
    assert "in sync" in result.output
    assert "reports" in result.output


def test_dry_run_sync_changes_nothing(runner, env):
    result = runner.invoke(cli, ["sync", "--tenant", env["tenant"], "--dry-run"])
    assert result.exit_code == 0
    assert result.output.startswith("[dry run]")

    result = runner.invoke(cli, ["status", "--tenant", env["tenant"]])
    assert "OUT OF SYNC" in result.output


def test_unknown_tenant_exits_1(runner, env):
    result = runner.invoke(cli, ["sync", "--tenant", "ghost"])
    assert result.exit_code == 1
    assert "Unknown tenant" in result.output


def test_check_permission(runner, env):
    args = ["check", "--user", "u1", "--tenant", env["tenant"], "--permission", "reports:export"]
    result = runner.invoke(cli, args)
    assert result.exit_code == 1
    assert "DENIED: Missing permission: reports:export" in result.output

    runner.invoke(cli, ["sync", "--tenant", env["tenant"]])
    result = runner.invoke(cli, args)
    assert result.exit_code == 0
    assert result.output.strip() == "ALLOWED"


def test_check_feature_and_surface(runner, env):
    result = runner.invoke(
        cli, ["check", "--user", "u1", "--tenant", env["tenant"], "--feature", "reports"]
    )
    assert result.exit_code == 0

    result = runner.invoke(
        cli, ["check", "--user", "u1", "--tenant", env["tenant"], "--surface", "admin/reports"]
    )
    assert result.exit_code == 1
    assert "has no access binding" in result.output


def test_check_requires_exactly_one_selector(runner, env):
    result = runner.invoke(cli, ["check", "--user", "u1", "--tenant", env["tenant"]])
    assert result.exit_code == 2

    result = runner.invoke(
        cli,
        [
            "check", "--user", "u1", "--tenant", env["tenant"],
            "--feature", "reports", "--surface", "admin/reports",
        ],
    )
    assert result.exit_code == 2


def test_audit_prints_json_lines(runner, env):
    runner.invoke(cli, ["sync", "--tenant", env["tenant"]])
    result = runner.invoke(cli, ["audit", "--tenant", env["tenant"]])
    assert result.exit_code == 0

    [line] = result.output.strip().splitlines()
    entry = json.loads(line)
    assert entry["operation"] == "deploy_feature"
    assert entry["feature_id"] == env["feature"]
