"""Shared fixtures: temporary SQLite store and a seeding helper."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from accessgate.config import Settings, reset_settings
from accessgate.events.bus import reset_event_bus
from accessgate.service import reset_access_control
from accessgate.storage.database import close_db, get_session, init_db
from accessgate.storage.models import Base
from accessgate.storage.sql_repositories import sql_unit_of_work
from accessgate.types import utcnow


@pytest.fixture(autouse=True)
def _reset():
    reset_settings()
    reset_event_bus()
    reset_access_control()
    yield
    reset_settings()
    reset_event_bus()
    reset_access_control()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
async def uow_factory(tmp_path):
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'accessgate.db'}")
    yield sql_unit_of_work
    await close_db()


class Seeder:
    """Authors catalog, RBAC and grant state the way collaborators would."""

    def __init__(self, uow_factory) -> None:  # type: ignore[no-untyped-def]
        self._uow_factory = uow_factory

    async def tenant(self, slug: str = "acme") -> str:
        async with self._uow_factory() as uow:
            tenant = await uow.tenants.create(name=slug.title(), slug=slug)
            await uow.commit()
            return tenant.id

    async def role(self, tenant_id: str | None, key: str, metadata_key: str | None = None) -> str:
        async with self._uow_factory() as uow:
            role = await uow.roles.create(tenant_id, key, metadata_key or f"role_{key}")
            await uow.commit()
            return role.id

    async def permission(self, tenant_id: str, code: str, source: str = "manual") -> str:
        async with self._uow_factory() as uow:
            permission = await uow.permissions.create(tenant_id, code, source=source)
            await uow.commit()
            return permission.id

    async def link(self, role_id: str, permission_id: str) -> None:
        async with self._uow_factory() as uow:
            await uow.permissions.link_role(role_id, permission_id)
            await uow.commit()

    async def bundle(self, tenant_id: str, key: str, permission_ids: list[str]) -> str:
        async with self._uow_factory() as uow:
            bundle = await uow.bundles.create(tenant_id, key)
            for permission_id in permission_ids:
                await uow.bundles.add_permission(bundle.id, permission_id)
            await uow.commit()
            return bundle.id

    async def attach_bundle(self, role_id: str, bundle_id: str) -> None:
        async with self._uow_factory() as uow:
            await uow.bundles.attach_to_role(role_id, bundle_id)
            await uow.commit()

    async def assign(self, user_id: str, role_id: str, tenant_id: str, **kwargs) -> None:  # type: ignore[no-untyped-def]
        async with self._uow_factory() as uow:
            await uow.assignments.assign(user_id, role_id, tenant_id, **kwargs)
            await uow.commit()

    async def super_admin(self, user_id: str, admin_role: str = "super_admin") -> None:
        async with self._uow_factory() as uow:
            await uow.principals.set_admin_role(user_id, admin_role)
            await uow.commit()

    async def feature(
        self,
        code: str,
        templates: dict[str, list[str]] | None = None,
        surface_id: str | None = None,
    ) -> str:
        """Create a feature whose templates map permission code -> role keys."""
        async with self._uow_factory() as uow:
            feature = await uow.features.create(code, surface_id=surface_id)
            for order, (permission_code, role_keys) in enumerate((templates or {}).items()):
                template = await uow.features.add_permission_template(
                    feature.id, permission_code, display_order=order
                )
                for role_key in role_keys:
                    await uow.features.add_role_template(template.id, role_key)
            await uow.commit()
            return feature.id

    async def grant(
        self,
        tenant_id: str,
        feature_id: str,
        starts_at: datetime | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        async with self._uow_factory() as uow:
            await uow.grants.grant(
                tenant_id,
                feature_id,
                starts_at=starts_at or utcnow() - timedelta(days=30),
                expires_at=expires_at,
            )
            await uow.commit()

    async def revoke(self, tenant_id: str, feature_id: str, at: datetime | None = None) -> None:
        async with self._uow_factory() as uow:
            await uow.grants.revoke(tenant_id, feature_id, at or utcnow() - timedelta(seconds=1))
            await uow.commit()

    async def surface(self, surface_id: str, kind: str = "page") -> None:
        async with self._uow_factory() as uow:
            await uow.surfaces.register(surface_id, kind)
            await uow.commit()

    async def bind(
        self,
        tenant_id: str | None,
        surface_id: str,
        target_kind: str,
        target_id: str,
        required_feature_code: str | None = None,
        enforces_license: bool = False,
    ) -> None:
        async with self._uow_factory() as uow:
            await uow.surfaces.bind_if_absent(
                tenant_id,
                surface_id,
                target_kind,
                target_id,
                required_feature_code=required_feature_code,
                enforces_license=enforces_license,
            )
            await uow.commit()


@pytest.fixture
def seed(uow_factory) -> Seeder:  # type: ignore[no-untyped-def]
    return Seeder(uow_factory)


async def snapshot() -> dict[str, list[tuple]]:
    """Every row of every table, for no-write assertions."""
    rows: dict[str, list[tuple]] = {}
    async with get_session() as session:
        for table in Base.metadata.sorted_tables:
            result = await session.execute(select(table))
            rows[table.name] = sorted(tuple(str(v) for v in row) for row in result.all())
    return rows


@pytest.fixture
def take_snapshot():
    return snapshot
