"""Read access to the RBAC audit trail written by the deployment pipeline."""

from __future__ import annotations

from typing import Any

from accessgate.storage.repositories import UnitOfWorkFactory


class AuditLogger:
    """Paginated view over ``rbac_audit_log``, newest first."""

    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = uow_factory

    async def get_audit_log(
        self,
        tenant_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Get paginated audit log entries for a tenant."""
        async with self._uow_factory() as uow:
            rows = await uow.audit.list(tenant_id, limit=limit, offset=offset)

        return [
            {
                "id": row.id,
                "timestamp": row.created_at.isoformat(),
                "tenant_id": row.tenant_id,
                "operation": row.operation,
                "feature_id": row.feature_id,
                "detail": row.detail or {},
            }
            for row in rows
        ]
