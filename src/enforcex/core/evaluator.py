from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from .errors import EnforcexError, EvaluationError
from .expr import CompiledExpr
from .model import Effect, EffectKind, Model
from .roles import RoleGraph


@dataclass(frozen=True)
class Decision:
    """Outcome of one enforcement call.

    ``rule`` is the policy rule that decided the outcome (``None`` when no
    rule matched or the matcher does not look at policies).
    """

    allowed: bool
    effect: Effect
    rule: Optional[Tuple[str, ...]] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class EvalContext:
    """Passed to contextual matcher functions (role predicates)."""

    role_graphs: Mapping[str, RoleGraph]


def _run(matcher: CompiledExpr, request: Sequence[Any], rule: Sequence[Any], ctx: EvalContext) -> bool:
    try:
        result = matcher(request, rule, ctx)
    except EnforcexError:
        raise
    except Exception as e:
        where = f" on rule {list(rule)!r}" if rule else ""
        raise EvaluationError(
            f"matcher {matcher.source!r} failed{where}: {type(e).__name__}: {e}"
        ) from e
    if not isinstance(result, bool):
        raise EvaluationError(
            f"matcher {matcher.source!r} returned {type(result).__name__}, expected bool"
        )
    return result


def _rule_effect(rule: Sequence[str], eft_index: Optional[int]) -> Effect:
    if eft_index is None:
        return Effect.ALLOW
    value = rule[eft_index]
    if value == "allow":
        return Effect.ALLOW
    if value == "deny":
        return Effect.DENY
    return Effect.INDETERMINATE


def evaluate(
    model: Model,
    request: Sequence[Any],
    rules: Iterable[Sequence[str]],
    role_graphs: Mapping[str, RoleGraph],
) -> Decision:
    """Evaluate *request* against *rules* and combine per ``model.effect``.

    A pure function of its inputs; callers provide a consistent snapshot.
    """
    if len(request) != len(model.request_fields):
        raise EvaluationError(
            f"request has {len(request)} values, model expects "
            f"{len(model.request_fields)} ({', '.join(model.request_fields)})"
        )
    ctx = EvalContext(role_graphs)
    matcher = model.matcher
    kind = model.effect

    if not matcher.uses_policy:
        if _run(matcher, request, (), ctx):
            return Decision(True, Effect.ALLOW, None, "matcher satisfied")
        if kind is EffectKind.ALLOW_BY_DEFAULT:
            return Decision(True, Effect.ALLOW, None, "no deny rule matched")
        return Decision(False, Effect.INDETERMINATE, None, "matcher not satisfied")

    eft_index = model.eft_index
    first_allow: Optional[Tuple[str, ...]] = None
    for rule in rules:
        if not _run(matcher, request, rule, ctx):
            continue
        eft = _rule_effect(rule, eft_index)
        if eft is Effect.INDETERMINATE:
            continue
        if eft is Effect.DENY:
            if kind is not EffectKind.ALLOW_OVERRIDE:
                return Decision(False, Effect.DENY, tuple(rule), "denied by rule")
            continue
        # allow
        if kind in (EffectKind.ALLOW_OVERRIDE, EffectKind.PRIORITY):
            return Decision(True, Effect.ALLOW, tuple(rule), "allowed by rule")
        if first_allow is None:
            first_allow = tuple(rule)

    if kind is EffectKind.DENY_OVERRIDE and first_allow is not None:
        return Decision(True, Effect.ALLOW, first_allow, "allowed by rule")
    if kind is EffectKind.ALLOW_BY_DEFAULT:
        return Decision(True, Effect.ALLOW, None, "no deny rule matched")
    return Decision(False, Effect.INDETERMINATE, None, "no matching rule")


__all__ = ["Decision", "EvalContext", "evaluate"]
