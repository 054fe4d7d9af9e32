"""Boolean combinators over gates."""

from __future__ import annotations

import typing

from accessgate.errors import ConfigurationError
from accessgate.gates.base import EvaluationContext, Gate
from accessgate.types import Decision


class _Combinator(Gate):
    def __init__(self, *gates: Gate, **options: typing.Any) -> None:
        super().__init__(**options)
        if not gates:
            raise ConfigurationError(f"{type(self).__name__} requires at least one gate")
        self.gates = gates

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(repr(g) for g in self.gates)})"


class All(_Combinator):
    """Every child must allow. Stops at, and reports, the first denial."""

    async def _evaluate(self, ctx: EvaluationContext) -> Decision:
        for gate in self.gates:
            decision = await gate.evaluate(ctx)
            if not decision.allowed:
                return decision
        return Decision.allow()


class Any(_Combinator):
    """One child must allow. Stops at the first allow.

    When every child denies, the reasons are joined with ``"; "`` and the
    first fallback offered by a child is kept.
    """

    async def _evaluate(self, ctx: EvaluationContext) -> Decision:
        denials: list[Decision] = []
        for gate in self.gates:
            decision = await gate.evaluate(ctx)
            if decision.allowed:
                return decision
            denials.append(decision)

        reasons = [d.reason for d in denials if d.reason]
        return Decision(
            allowed=False,
            reason="; ".join(reasons) or "Access denied",
            fallback_path=next((d.fallback_path for d in denials if d.fallback_path), None),
            fallback_reason=next((d.fallback_reason for d in denials if d.fallback_reason), None),
        )
