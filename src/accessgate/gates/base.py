"""Gate base class and per-evaluation memoization."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import replace
from typing import Any

from accessgate.config import Settings, get_settings
from accessgate.errors import AccessDeniedError
from accessgate.types import Decision

logger = logging.getLogger("accessgate.gates")


class EvaluationContext:
    """One top-level ``check`` call.

    Combinators hand the same context to every child so that a resolver is
    read at most once per evaluation.
    """

    def __init__(self, user_id: str | None, tenant_id: str | None) -> None:
        self.user_id = user_id
        self.tenant_id = tenant_id
        self._cache: dict[Hashable, Any] = {}
        self._raising: list[BaseException] = []

    def mark_raising(self, exc: BaseException) -> None:
        """Flag an error that must reach the caller through every enclosing gate."""
        if not self.is_raising(exc):
            self._raising.append(exc)

    def is_raising(self, exc: BaseException) -> bool:
        return any(exc is seen for seen in self._raising)

    async def cached(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        if key not in self._cache:
            self._cache[key] = await factory()
        return self._cache[key]


class Gate:
    """A policy that answers whether a principal may proceed.

    Subclasses implement ``_evaluate``. ``check`` and ``allows`` never raise
    while graceful fail is on; ``verify`` raises ``AccessDeniedError`` only.

    Args:
        graceful_fail: Convert unexpected errors into a denial. ``None``
            takes ``access.graceful_fail`` from settings.
        fallback_path: Redirect target handed back on denial.
        fallback_reason: UI hint handed back on denial.
    """

    def __init__(
        self,
        *,
        graceful_fail: bool | None = None,
        fallback_path: str | None = None,
        fallback_reason: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.graceful_fail = graceful_fail
        self.fallback_path = fallback_path
        self.fallback_reason = fallback_reason
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def _graceful(self) -> bool:
        if self.graceful_fail is not None:
            return self.graceful_fail
        return self.settings.access.graceful_fail

    async def _evaluate(self, ctx: EvaluationContext) -> Decision:
        raise NotImplementedError

    async def evaluate(self, ctx: EvaluationContext) -> Decision:
        try:
            decision = await self._evaluate(ctx)
        except Exception as exc:
            # a child that opted out of graceful fail wins over its parents
            if not self._graceful() or ctx.is_raising(exc):
                ctx.mark_raising(exc)
                raise
            logger.warning("%r failed, denying: %s", self, exc)
            decision = Decision.deny(f"Access check failed: {exc}")

        if decision.allowed or not (self.fallback_path or self.fallback_reason):
            return decision
        return replace(
            decision,
            fallback_path=self.fallback_path or decision.fallback_path,
            fallback_reason=self.fallback_reason or decision.fallback_reason,
        )

    async def check(self, user_id: str | None, tenant_id: str | None = None) -> Decision:
        decision = await self.evaluate(EvaluationContext(user_id, tenant_id))
        if not decision.allowed:
            logger.debug("Denied user %s in tenant %s by %r: %s", user_id, tenant_id, self, decision.reason)
        return decision

    async def allows(self, user_id: str | None, tenant_id: str | None = None) -> bool:
        return (await self.check(user_id, tenant_id)).allowed

    async def verify(self, user_id: str | None, tenant_id: str | None = None) -> None:
        decision = await self.check(user_id, tenant_id)
        if not decision.allowed:
            raise AccessDeniedError(
                decision.reason or "Access denied",
                fallback_path=decision.fallback_path,
                fallback_reason=decision.fallback_reason,
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
