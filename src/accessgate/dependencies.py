"""FastAPI dependencies over the gate Decision API."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import HTTPException, Request, status

from accessgate.gates import Gate

PrincipalGetter = Callable[[Request], tuple[str | None, str | None]]


def principal_from_state(request: Request) -> tuple[str | None, str | None]:
    """Read ``(sub, tenant_id)`` from ``request.state.user`` set by auth middleware."""
    user = getattr(request.state, "user", None) or {}
    return user.get("sub"), user.get("tenant_id")


def require_gate(
    gate: Gate,
    principal: PrincipalGetter = principal_from_state,
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Dependency factory that raises 403 when ``gate`` denies the request principal."""

    async def checker(request: Request) -> None:
        user_id, tenant_id = principal(request)
        decision = await gate.check(user_id, tenant_id)
        if not decision.allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "access_denied",
                    "reason": decision.reason,
                    "fallback_path": decision.fallback_path,
                },
            )

    return checker
