from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from . import __version__
from .core.enforcer import Enforcer
from .core.errors import CompileError, EnforcexError
from .core.functions import MatchOptions
from .core.model import Model
from .storage import FilePolicySource

EXIT_OK = 0
EXIT_DENIED = 1
EXIT_ERROR = 2


def _options(ns: argparse.Namespace) -> MatchOptions:
    return MatchOptions(
        case_sensitive=not getattr(ns, "ignore_case", False),
        pattern_mode=getattr(ns, "pattern_mode", None) or "glob",
    )


def _print(obj: Any, fmt: str = "json") -> None:
    if fmt == "text" and isinstance(obj, dict):
        for k, v in obj.items():
            print(f"{k}: {v}")
        return
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def cmd_validate(ns: argparse.Namespace) -> int:
    """Compile the model (and parse the policy file if given)."""
    try:
        model = Model.from_file(ns.model, options=_options(ns))
        report: Dict[str, Any] = {
            "ok": True,
            "request": list(model.request_fields),
            "policy": list(model.policy_fields),
            "roles": dict(model.role_types),
            "effect": model.effect.value,
            "matcher": model.matcher.source,
        }
        if getattr(ns, "policy", None):
            enforcer = Enforcer(model, FilePolicySource(ns.policy))
            report["policies"] = len(enforcer.get_policy())
            report["role_links"] = sum(
                len(enforcer.get_named_grouping_policy(pt)) for pt in model.role_types
            )
    except EnforcexError as e:
        kind = "compile" if isinstance(e, CompileError) else "policy"
        _print({"ok": False, "error": kind, "message": str(e)}, ns.format)
        return EXIT_ERROR
    _print(report, ns.format)
    return EXIT_OK


def cmd_check(ns: argparse.Namespace) -> int:
    """Enforce one request; exit 0 when allowed, 1 when denied, 2 on error."""
    try:
        enforcer = Enforcer.from_files(ns.model, ns.policy, options=_options(ns))
        decision = enforcer.enforce_ex(*ns.values)
    except EnforcexError as e:
        _print({"ok": False, "error": type(e).__name__, "message": str(e)}, ns.format)
        return EXIT_ERROR
    _print(
        {
            "allowed": decision.allowed,
            "effect": decision.effect.value,
            "rule": list(decision.rule) if decision.rule else None,
            "reason": decision.reason,
        },
        ns.format,
    )
    return EXIT_OK if decision.allowed else EXIT_DENIED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enforcex", description="Access-control model and policy tooling"
    )
    parser.add_argument("--version", action="store_true", help="print version and exit")
    sub = parser.add_subparsers(dest="command")

    def _common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--model", required=True, help="path to the model file")
        p.add_argument("--format", choices=("json", "text"), default="json")
        p.add_argument("--ignore-case", action="store_true", help="case-insensitive matching")
        p.add_argument(
            "--pattern-mode",
            choices=("glob", "regex", "wildcard"),
            default="glob",
            help="semantics of globMatch()",
        )

    p_val = sub.add_parser("validate", help="compile a model and optionally load a policy file")
    _common(p_val)
    p_val.add_argument("--policy", help="path to a CSV policy file")
    p_val.set_defaults(func=cmd_validate)

    p_chk = sub.add_parser("check", help="enforce a single request")
    _common(p_chk)
    p_chk.add_argument("--policy", required=True, help="path to a CSV policy file")
    p_chk.add_argument("values", nargs="+", help="request values, e.g. alice /data GET")
    p_chk.set_defaults(func=cmd_check)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(list(argv) if argv is not None else None)
    if ns.version:
        print(f"enforcex {__version__}")
        return EXIT_OK
    func = getattr(ns, "func", None)
    if func is None:
        parser.print_usage(sys.stderr)
        return EXIT_ERROR
    rc = func(ns)
    return rc if isinstance(rc, int) else EXIT_OK


def _entry() -> None:  # pragma: no cover
    sys.exit(main())


__all__: List[str] = ["main", "build_parser", "cmd_validate", "cmd_check"]

if __name__ == "__main__":  # pragma: no cover
    _entry()
