"""Surface identifier to binding lookup."""

from __future__ import annotations

import logging

from accessgate.errors import NotFoundError
from accessgate.storage.models import SurfaceBindingRow
from accessgate.storage.repositories import UnitOfWorkFactory
from accessgate.types import SurfaceBinding, binding_target

logger = logging.getLogger("accessgate.resolvers")


def to_binding(row: SurfaceBindingRow) -> SurfaceBinding:
    return SurfaceBinding(
        surface_id=row.surface_id,
        target=binding_target(row.target_kind, row.target_id),
        tenant_id=row.tenant_id,
        required_feature_code=row.required_feature_code,
        enforces_license=row.enforces_license,
    )


class SurfaceBindingResolver:
    """Maps a registered surface to the bindings that gate it.

    An unregistered surface raises ``NotFoundError``; a registered surface
    with nothing bound resolves to an empty list. Tenant-agnostic bindings
    (``tenant_id`` null) apply to every tenant.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = uow_factory

    async def resolve_bindings(
        self, surface_id: str, tenant_id: str | None = None
    ) -> list[SurfaceBinding]:
        async with self._uow_factory() as uow:
            if await uow.surfaces.get(surface_id) is None:
                raise NotFoundError("surface", surface_id)
            rows = await uow.surfaces.bindings_for(surface_id, tenant_id)
        return [to_binding(row) for row in rows]

    async def resolve_binding(
        self, surface_id: str, tenant_id: str | None = None
    ) -> SurfaceBinding | None:
        """First binding that grants access, else the first menu placement, else None."""
        bindings = await self.resolve_bindings(surface_id, tenant_id)
        for binding in bindings:
            if binding.grants_access:
                return binding
        return bindings[0] if bindings else None
