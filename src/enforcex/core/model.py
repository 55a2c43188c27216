"""Model text compiler.

A model is INI-like text::

    [request_definition]
    r = sub, obj, act

    [policy_definition]
    p = sub, obj, act, eft

    [role_definition]
    g = _, _

    [policy_effect]
    e = some(where (p.eft == allow)) && !some(where (p.eft == deny))

    [matchers]
    m = g(r.sub, p.sub) && keyMatch(r.obj, p.obj) && r.act == p.act

:func:`compile_model` turns it into an immutable :class:`Model` whose matcher
is compiled once and evaluated per rule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import CompileError
from .expr import CompiledExpr, compile_expr
from .functions import DEFAULT_OPTIONS, FunctionRegistry, MatchOptions, default_functions

SECTIONS = {
    "request_definition": "r",
    "policy_definition": "p",
    "role_definition": "g",
    "policy_effect": "e",
    "matchers": "m",
}
_REQUIRED = ("request_definition", "policy_definition", "policy_effect", "matchers")
_ROLE_KEY_RE = re.compile(r"^g\d*$")


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    INDETERMINATE = "indeterminate"


class EffectKind(str, Enum):
    """How matching rules combine into one decision."""

    ALLOW_OVERRIDE = "allow-override"
    DENY_OVERRIDE = "deny-override"
    ALLOW_BY_DEFAULT = "allow-by-default"
    PRIORITY = "priority"


_EFFECTS = {
    "some(where(p.eft==allow))": EffectKind.ALLOW_OVERRIDE,
    "!some(where(p.eft==deny))": EffectKind.ALLOW_BY_DEFAULT,
    "some(where(p.eft==allow))&&!some(where(p.eft==deny))": EffectKind.DENY_OVERRIDE,
    "priority(p.eft)||deny": EffectKind.PRIORITY,
}


@dataclass(frozen=True)
class Model:
    text: str
    request_fields: Tuple[str, ...]
    policy_fields: Tuple[str, ...]
    role_types: Mapping[str, int]  # "g" -> 2 (or 3 with a domain)
    effect: EffectKind
    matcher: CompiledExpr
    options: MatchOptions = field(default=DEFAULT_OPTIONS)

    @property
    def eft_index(self) -> Optional[int]:
        return self.policy_fields.index("eft") if "eft" in self.policy_fields else None

    @property
    def priority_index(self) -> Optional[int]:
        if self.effect is not EffectKind.PRIORITY or "priority" not in self.policy_fields:
            return None
        return self.policy_fields.index("priority")

    def has_domains(self, ptype: str = "g") -> bool:
        return self.role_types.get(ptype, 0) > 2

    @classmethod
    def from_file(cls, path: str, **kwargs: Any) -> "Model":
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise CompileError(f"cannot read model file {path!r}: {e}") from e
        return compile_model(text, **kwargs)


def _parse_sections(text: str) -> Dict[str, Dict[str, str]]:
    sections: Dict[str, Dict[str, str]] = {}
    current: Optional[str] = None
    pending = ""
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if pending:
            line = pending + " " + line
            pending = ""
        if not line or line.startswith(("#", ";")):
            continue
        if line.endswith("\\"):
            pending = line[:-1].strip()
            continue
        if line.startswith("[") and line.endswith("]"):
            current = line[1:-1].strip()
            if current not in SECTIONS:
                raise CompileError(f"unknown section {current!r} (line {lineno})")
            if current in sections:
                raise CompileError(f"duplicate section {current!r} (line {lineno})")
            sections[current] = {}
            continue
        if current is None:
            raise CompileError(f"key outside of any section (line {lineno})")
        key, sep, value = line.partition("=")
        if not sep:
            raise CompileError(f"expected 'key = value' (line {lineno})", section=current)
        key, value = key.strip(), value.strip()
        if key in sections[current]:
            raise CompileError(f"duplicate key {key!r}", section=current)
        sections[current][key] = value
    if pending:
        raise CompileError("dangling line continuation at end of model")
    for name in _REQUIRED:
        if name not in sections:
            raise CompileError(f"missing section {name!r}")
    return sections


def _single(sections: Dict[str, Dict[str, str]], name: str) -> str:
    entries = sections[name]
    key = SECTIONS[name]
    extra = sorted(set(entries) - {key})
    if extra:
        raise CompileError(f"unsupported key(s) {extra}; expected {key!r}", section=name)
    if key not in entries:
        raise CompileError(f"missing key {key!r}", section=name)
    return entries[key]


def _field_list(value: str, section: str) -> Tuple[str, ...]:
    names = tuple(n.strip() for n in value.split(","))
    for n in names:
        if not n.isidentifier():
            raise CompileError(f"invalid field name {n!r}", section=section)
    if len(set(names)) != len(names):
        raise CompileError("duplicate field name", section=section)
    return names


def _role_types(entries: Mapping[str, str]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for key, value in entries.items():
        if not _ROLE_KEY_RE.match(key):
            raise CompileError(f"invalid role type {key!r}", section="role_definition")
        parts = [p.strip() for p in value.split(",")]
        if any(p != "_" for p in parts) or len(parts) not in (2, 3):
            raise CompileError(
                f"{key} must be '_, _' or '_, _, _', got {value!r}", section="role_definition"
            )
        out[key] = len(parts)
    return out


def _role_predicate(ptype: str):
    def has_link(ctx: Any, name1: str, name2: str, domain: Optional[str] = None) -> bool:
        return ctx.role_graphs[ptype].has_link(name1, name2, domain)

    has_link.__name__ = ptype
    return has_link


def compile_model(
    text: str,
    *,
    options: MatchOptions = DEFAULT_OPTIONS,
    functions: Optional[FunctionRegistry] = None,
) -> Model:
    """Compile model *text*; raise :class:`CompileError` on any problem.

    *functions* adds custom matcher functions on top of the built-ins.
    """
    sections = _parse_sections(text)
    request_fields = _field_list(_single(sections, "request_definition"), "request_definition")
    policy_fields = _field_list(_single(sections, "policy_definition"), "policy_definition")
    role_types = _role_types(sections.get("role_definition", {}))

    raw_effect = _single(sections, "policy_effect")
    effect = _EFFECTS.get(re.sub(r"\s+", "", raw_effect))
    if effect is None:
        raise CompileError(f"unsupported effect {raw_effect!r}", section="policy_effect")

    registry = default_functions(options)
    if functions is not None:
        for name, spec in functions.items():
            registry.register(name, spec.fn, spec.arity, contextual=spec.contextual)
    for ptype, arity in role_types.items():
        registry.register(ptype, _role_predicate(ptype), arity, contextual=True)

    try:
        matcher = compile_expr(
            _single(sections, "matchers"),
            {"r": request_fields, "p": policy_fields},
            registry,
            options,
        )
    except CompileError as e:
        raise CompileError(str(e), section="matchers") from e

    return Model(
        text=text,
        request_fields=request_fields,
        policy_fields=policy_fields,
        role_types=role_types,
        effect=effect,
        matcher=matcher,
        options=options,
    )


__all__ = ["Model", "Effect", "EffectKind", "compile_model", "SECTIONS"]
