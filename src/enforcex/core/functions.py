"""Built-in matcher functions and the registry that resolves them.

Matchers call functions by name (``keyMatch(r.obj, p.obj)``). Names are
resolved once, when the model is compiled, so an unknown function is a
:class:`~enforcex.core.errors.CompileError` rather than a runtime failure.
"""

from __future__ import annotations

import fnmatch
import ipaddress
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, Literal, Optional, Tuple

PatternMode = Literal["glob", "regex", "wildcard"]

_PATTERN_MODES = ("glob", "regex", "wildcard")


@dataclass(frozen=True)
class MatchOptions:
    """String matching knobs shared by comparisons and pattern functions.

    ``pattern_mode`` selects what ``globMatch`` understands:
      - ``glob``     : full shell-style globbing (``*``, ``?``, ``[...]``)
      - ``regex``    : the pattern is a regular expression (full match)
      - ``wildcard`` : only a leading and/or trailing ``*``
    """

    case_sensitive: bool = True
    pattern_mode: PatternMode = "glob"

    def __post_init__(self) -> None:
        if self.pattern_mode not in _PATTERN_MODES:
            raise ValueError(
                f"pattern_mode must be one of {_PATTERN_MODES}, got {self.pattern_mode!r}"
            )

    @property
    def re_flags(self) -> int:
        return 0 if self.case_sensitive else re.IGNORECASE

    def fold(self, value: Any) -> Any:
        if not self.case_sensitive and isinstance(value, str):
            return value.casefold()
        return value


DEFAULT_OPTIONS = MatchOptions()


@dataclass(frozen=True)
class FunctionSpec:
    fn: Callable[..., Any]
    arity: Optional[int] = None  # None: any number of arguments
    # contextual functions receive the evaluation context as first argument
    contextual: bool = False


# --- pattern helpers ----------------------------------------------------------


@lru_cache(maxsize=1024)
def _compiled(pattern: str, flags: int) -> "re.Pattern[str]":
    return re.compile(pattern, flags)


def _require_str(*values: Any) -> None:
    for v in values:
        if not isinstance(v, str):
            raise TypeError(f"expected a string argument, got {type(v).__name__}")


def key_match(key1: str, key2: str, *, flags: int = 0) -> bool:
    """``/foo/bar`` matches ``/foo/*``; ``*`` is honoured only as a suffix."""
    _require_str(key1, key2)
    i = key2.find("*")
    if i == -1:
        return _compiled(re.escape(key2) + r"\Z", flags).match(key1) is not None
    return _compiled(re.escape(key2[:i]), flags).match(key1) is not None


def _key_match2_regex(key2: str) -> str:
    out = []
    for part in re.split(r"(/\*|:[^/]+)", key2):
        if part == "/*":
            out.append("/.*")
        elif part.startswith(":"):
            out.append("[^/]+")
        else:
            out.append(re.escape(part))
    return "".join(out) + r"\Z"


def key_match2(key1: str, key2: str, *, flags: int = 0) -> bool:
    """``/resource/:id`` style parameters plus ``/*`` tails."""
    _require_str(key1, key2)
    return _compiled(_key_match2_regex(key2), flags).match(key1) is not None


def _key_match3_regex(key2: str) -> str:
    out = []
    for part in re.split(r"(/\*|\{[^/}]+\})", key2):
        if part == "/*":
            out.append("/.*")
        elif part.startswith("{") and part.endswith("}"):
            out.append("[^/]+")
        else:
            out.append(re.escape(part))
    return "".join(out) + r"\Z"


def key_match3(key1: str, key2: str, *, flags: int = 0) -> bool:
    """``/resource/{id}`` style parameters plus ``/*`` tails."""
    _require_str(key1, key2)
    return _compiled(_key_match3_regex(key2), flags).match(key1) is not None


def regex_match(key1: str, key2: str, *, flags: int = 0) -> bool:
    _require_str(key1, key2)
    return _compiled(key2, flags).search(key1) is not None


def _wildcard_match(value: str, pattern: str, options: MatchOptions) -> bool:
    v, pat = options.fold(value), options.fold(pattern)
    if pat == "*":
        return True
    lead, trail = pat.startswith("*"), pat.endswith("*")
    core = pat[1 if lead else 0 : len(pat) - 1 if trail else len(pat)]
    if lead and trail:
        return core in v
    if lead:
        return v.endswith(core)
    if trail:
        return v.startswith(core)
    return v == pat


def glob_match(key1: str, key2: str, *, options: MatchOptions = DEFAULT_OPTIONS) -> bool:
    """Match *key1* against *key2* according to ``options.pattern_mode``."""
    _require_str(key1, key2)
    if options.pattern_mode == "wildcard":
        return _wildcard_match(key1, key2, options)
    if options.pattern_mode == "regex":
        return _compiled(key2, options.re_flags).fullmatch(key1) is not None
    return _compiled(fnmatch.translate(key2), options.re_flags).match(key1) is not None


def ip_match(ip: str, network: str) -> bool:
    """``192.168.2.1`` matches ``192.168.2.0/24`` (or an exact address)."""
    _require_str(ip, network)
    addr = ipaddress.ip_address(ip)
    if "/" in network:
        return addr in ipaddress.ip_network(network, strict=False)
    return addr == ipaddress.ip_address(network)


# --- registry -----------------------------------------------------------------


class FunctionRegistry:
    """Name -> :class:`FunctionSpec` mapping consulted by the matcher compiler."""

    def __init__(self, functions: Optional[Dict[str, FunctionSpec]] = None) -> None:
        self._functions: Dict[str, FunctionSpec] = dict(functions or {})

    def register(
        self,
        name: str,
        fn: Callable[..., Any],
        arity: Optional[int] = None,
        *,
        contextual: bool = False,
    ) -> None:
        if not name.isidentifier():
            raise ValueError(f"invalid function name: {name!r}")
        self._functions[name] = FunctionSpec(fn, arity, contextual)

    def get(self, name: str) -> Optional[FunctionSpec]:
        return self._functions.get(name)

    def copy(self) -> "FunctionRegistry":
        return FunctionRegistry(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    def items(self) -> Iterator[Tuple[str, FunctionSpec]]:
        return iter(self._functions.items())


def default_functions(options: MatchOptions = DEFAULT_OPTIONS) -> FunctionRegistry:
    """Registry of the built-in pattern functions bound to *options*."""
    flags = options.re_flags
    reg = FunctionRegistry()
    reg.register("keyMatch", lambda a, b: key_match(a, b, flags=flags), 2)
    reg.register("keyMatch2", lambda a, b: key_match2(a, b, flags=flags), 2)
    reg.register("keyMatch3", lambda a, b: key_match3(a, b, flags=flags), 2)
    reg.register("regexMatch", lambda a, b: regex_match(a, b, flags=flags), 2)
    reg.register("globMatch", lambda a, b: glob_match(a, b, options=options), 2)
    reg.register("ipMatch", ip_match, 2)
    return reg


__all__ = [
    "MatchOptions",
    "DEFAULT_OPTIONS",
    "FunctionSpec",
    "FunctionRegistry",
    "default_functions",
    "key_match",
    "key_match2",
    "key_match3",
    "regex_match",
    "glob_match",
    "ip_match",
]
