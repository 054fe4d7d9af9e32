"""Active licensed features per tenant."""

from __future__ import annotations

from datetime import datetime

from accessgate.storage.repositories import UnitOfWorkFactory
from accessgate.types import as_naive_utc, utcnow


class LicenseFeatureResolver:
    """Feature codes whose grant window contains the current time.

    A grant is active when ``starts_at <= now`` and either it never expires
    or ``now < expires_at``. Inactive catalog features never resolve.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = uow_factory

    async def resolve_active_features(
        self, tenant_id: str | None, at: datetime | None = None
    ) -> set[str]:
        if not tenant_id:
            return set()
        now = as_naive_utc(at) if at is not None else utcnow()
        async with self._uow_factory() as uow:
            return await uow.grants.active_feature_codes(tenant_id, now)

    async def has_feature(self, tenant_id: str | None, feature_code: str) -> bool:
        return feature_code in await self.resolve_active_features(tenant_id)
