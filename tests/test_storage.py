"""Tests for storage layer."""

from __future__ import annotations

import pytest

from accessgate.errors import TransientError
from accessgate.storage.database import _normalize_url, close_db, get_session
from accessgate.storage.sql_repositories import SqlPermissionRepository


def test_normalize_url():
    assert _normalize_url("sqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    assert _normalize_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert _normalize_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


@pytest.mark.asyncio
async def test_session_requires_init():
    await close_db()
    with pytest.raises(RuntimeError):
        get_session()


@pytest.mark.asyncio
async def test_leaving_without_commit_discards(uow_factory):
    async with uow_factory() as uow:
        await uow.tenants.create(name="Acme", slug="acme", tenant_id="t1")

    async with uow_factory() as uow:
        assert await uow.tenants.get("t1") is None


@pytest.mark.asyncio
async def test_exception_rolls_back(uow_factory):
    with pytest.raises(ValueError):
        async with uow_factory() as uow:
            await uow.tenants.create(name="Acme", slug="acme", tenant_id="t1")
            raise ValueError("abort")

    async with uow_factory() as uow:
        assert await uow.tenants.get("t1") is None


@pytest.mark.asyncio
async def test_storage_failure_is_transient(uow_factory):
    async with uow_factory() as uow:
        await uow.tenants.create(name="Acme", slug="acme")
        await uow.commit()

    with pytest.raises(TransientError):
        async with uow_factory() as uow:
            await uow.tenants.create(name="Acme again", slug="acme")


@pytest.mark.asyncio
async def test_upserts_report_whether_a_row_was_written(uow_factory, seed):
    tenant = await seed.tenant()
    role = await seed.role(tenant, "staff")

    async with uow_factory() as uow:
        first, created = await uow.permissions.insert_if_absent(
            tenant, "reports:export", source="license_feature", source_reference="f1"
        )
        assert created
        assert first.module == "reports"
        again, created = await uow.permissions.insert_if_absent(
            tenant, "reports:export", source="manual"
        )
        assert not created
        assert again.id == first.id
        assert again.source == "license_feature"

        assert await uow.permissions.link_role(role, first.id)
        assert not await uow.permissions.link_role(role, first.id)
        await uow.commit()


@pytest.mark.asyncio
async def test_deployment_record_written_only_on_change(uow_factory, seed):
    tenant = await seed.tenant()
    async with uow_factory() as uow:
        assert await uow.deployments.record(tenant, "f1", "deployed", permission_count=2)
        assert not await uow.deployments.record(tenant, "f1", "deployed", permission_count=2)
        assert await uow.deployments.record(tenant, "f1", "removed")
        await uow.commit()

    async with uow_factory() as uow:
        record = await uow.deployments.get(tenant, "f1")
    assert record.state == "removed"
    assert record.permission_count == 0


@pytest.mark.asyncio
async def test_row_vanishing_after_upsert_is_transient(uow_factory, seed, monkeypatch):
    tenant = await seed.tenant()

    async def vanished(self, tenant_id, code):
        return None

    monkeypatch.setattr(SqlPermissionRepository, "get_by_code", vanished)
    with pytest.raises(TransientError, match="missing after upsert"):
        async with uow_factory() as uow:
            await uow.permissions.insert_if_absent(tenant, "reports:export", source="manual")
