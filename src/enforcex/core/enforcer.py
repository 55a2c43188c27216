from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import CompileError, EvaluationError, MutationError
from .evaluator import Decision, evaluate
from .functions import DEFAULT_OPTIONS, FunctionRegistry, MatchOptions, default_functions
from .model import Model, compile_model
from .policy import PolicyStore
from .ports import DecisionLogSink, MetricsObserve, MetricsSink, PolicySource, WritablePolicySource
from .roles import MatchFunc, RoleGraph
from .rwlock import ReadWriteLock

logger = logging.getLogger("enforcex.enforcer")

POLICY_TYPE = "p"


@dataclass(frozen=True)
class _State:
    """Everything an evaluation reads. Replaced wholesale on reload."""

    model: Model
    policies: PolicyStore
    groupings: Dict[str, PolicyStore]
    roles: Dict[str, RoleGraph]


def _params(args: Sequence[Any]) -> Tuple[str, ...]:
    """Accept both ``f("a", "b")`` and ``f(["a", "b"])``."""
    if len(args) == 1 and isinstance(args[0], (list, tuple)):
        return tuple(args[0])
    return tuple(args)


class Enforcer:
    """Access-control decision point.

    Owns a compiled :class:`Model`, the policy store, one role graph per
    ``g`` type and an optional :class:`PolicySource`. ``enforce`` may be
    called from any number of threads; mutations are serialized and every
    evaluation sees either the state before or after a mutation, never a
    mix.

    Example::

        e = Enforcer(MODEL_TEXT)
        e.add_policy("admin", "/data", "GET")
        e.add_role_for_user("alice", "admin")
        e.enforce("alice", "/data", "GET")  # True

    *options* and *functions* are used to compile *model* when it is text.
    A compiled :class:`Model` keeps its own options and matcher functions:
    passing different *options* raises ``ValueError``, and *functions* then
    only serves name lookups in :meth:`add_matching_func`.
    """

    def __init__(
        self,
        model: Union[Model, str],
        source: Optional[PolicySource] = None,
        *,
        options: Optional[MatchOptions] = None,
        functions: Optional[FunctionRegistry] = None,
        metrics: Optional[MetricsSink] = None,
        logger_sink: Optional[DecisionLogSink] = None,
        auto_load: bool = True,
    ) -> None:
        self._functions = functions
        self._options = options
        self.source = source
        self.metrics = metrics
        self.logger_sink = logger_sink
        self._lock = ReadWriteLock()
        self._role_matchers: Dict[str, Tuple[Optional[MatchFunc], Optional[MatchFunc]]] = {}

        compiled = self._compile(model)
        self._state = self._build_state(compiled, ())
        if source is not None and auto_load:
            self.load_policy()

    @classmethod
    def from_files(cls, model_path: str, policy_path: Optional[str] = None, **kwargs: Any) -> "Enforcer":
        from ..storage import FilePolicySource

        model_kwargs = {k: kwargs[k] for k in ("options", "functions") if k in kwargs}
        model = Model.from_file(model_path, **model_kwargs)
        source = FilePolicySource(policy_path) if policy_path else None
        return cls(model, source, **kwargs)

    # ------------------------------------------------------------------ #
    # Model & state
    # ------------------------------------------------------------------ #

    def _compile(self, model: Union[Model, str]) -> Model:
        if isinstance(model, Model):
            if self._options is not None and self._options != model.options:
                raise ValueError("options= conflicts with the compiled model's options")
            return model
        return compile_model(
            model, options=self._options or DEFAULT_OPTIONS, functions=self._functions
        )

    @property
    def model(self) -> Model:
        return self._state.model

    def _new_graph(self, ptype: str) -> RoleGraph:
        name_fn, domain_fn = self._role_matchers.get(ptype, (None, None))
        return RoleGraph(matching_func=name_fn, domain_matching_func=domain_fn)

    def _build_state(self, model: Model, rows: Iterable[Sequence[str]]) -> _State:
        policies = PolicyStore(len(model.policy_fields), priority_index=model.priority_index)
        groupings = {pt: PolicyStore(arity) for pt, arity in model.role_types.items()}
        p_rows: List[Sequence[str]] = []
        g_rows: Dict[str, List[Sequence[str]]] = {pt: [] for pt in groupings}
        for row in rows:
            if not row:
                continue
            ptype, values = row[0], row[1:]
            if ptype == POLICY_TYPE:
                p_rows.append(values)
            elif ptype in g_rows:
                g_rows[ptype].append(values)
            else:
                raise MutationError(f"unknown rule type {ptype!r} in {list(row)!r}")
        policies.load(p_rows)
        roles: Dict[str, RoleGraph] = {}
        for ptype, store in groupings.items():
            store.load(g_rows[ptype])
            graph = self._new_graph(ptype)
            for rule in store:
                graph.add_link(*rule)
            roles[ptype] = graph
        return _State(model, policies, groupings, roles)

    def _rows(self, state: _State) -> List[List[str]]:
        rows = [[POLICY_TYPE, *rule] for rule in state.policies]
        for ptype, store in state.groupings.items():
            rows.extend([ptype, *rule] for rule in store)
        return rows

    def load_model(self, model: Union[Model, str]) -> None:
        """Swap in a new model, keeping current rules.

        On :class:`CompileError` (or rules that no longer fit) the previous
        model stays active.
        """
        compiled = self._compile(model)
        with self._lock.write():
            state = self._build_state(compiled, self._rows(self._state))
            self._state = state
        logger.info("ENFORCEX: model reloaded (effect=%s)", compiled.effect.value)

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def load_policy(self) -> None:
        """Replace every rule with the source's content in one atomic swap."""
        if self.source is None:
            raise MutationError("no policy source configured")
        try:
            rows = self.source.load()
        except (OSError, ValueError) as e:
            raise MutationError(f"cannot load policy: {e}") from e
        model = self._state.model
        state = self._build_state(model, rows)
        with self._lock.write():
            if self._state.model is not model:
                state = self._build_state(self._state.model, self._rows(state))
            self._state = state
        logger.info(
            "ENFORCEX: loaded %d policy rules and %d role links",
            len(state.policies),
            sum(len(g) for g in state.groupings.values()),
        )

    def save_policy(self) -> None:
        if not isinstance(self.source, WritablePolicySource):
            raise MutationError("policy source does not support saving")
        with self._lock.read():
            rows = self._rows(self._state)
        try:
            self.source.save(rows)
        except OSError as e:
            raise MutationError(f"cannot save policy: {e}") from e

    def set_policy_rows(self, rows: Iterable[Sequence[str]]) -> None:
        """Replace every rule with *rows* (``["p", ...]`` / ``["g", ...]``) atomically."""
        rows = list(rows)
        state = self._build_state(self._state.model, rows)
        with self._lock.write():
            if self._state.model is not state.model:
                state = self._build_state(self._state.model, rows)
            self._state = state

    # ------------------------------------------------------------------ #
    # Enforcement
    # ------------------------------------------------------------------ #

    def enforce_ex(self, *rvals: Any) -> Decision:
        """Decide and explain. Raises :class:`EvaluationError` on bad input."""
        t0 = time.perf_counter()
        try:
            with self._lock.read():
                state = self._state
                decision = evaluate(state.model, rvals, state.policies.rules(), state.roles)
        except EvaluationError:
            self._emit(rvals, None, time.perf_counter() - t0)
            raise
        self._emit(rvals, decision, time.perf_counter() - t0)
        return decision

    def enforce(self, *rvals: Any) -> bool:
        return self.enforce_ex(*rvals).allowed

    def batch_enforce(self, requests: Iterable[Sequence[Any]]) -> List[bool]:
        return [self.enforce(*req) for req in requests]

    def _emit(self, rvals: Sequence[Any], decision: Optional[Decision], elapsed: float) -> None:
        label = "error" if decision is None else ("allow" if decision.allowed else "deny")
        if self.metrics is not None:
            try:
                self.metrics.inc("enforcex_decisions_total", {"decision": label})
                if isinstance(self.metrics, MetricsObserve):
                    self.metrics.observe("enforcex_decision_seconds", elapsed, {"decision": label})
            except Exception:
                logger.exception("ENFORCEX: metrics sink failed")
        if self.logger_sink is not None:
            fields = self._state.model.request_fields
            payload: Dict[str, Any] = {
                "request": dict(zip(fields, rvals)) if len(fields) == len(rvals) else list(rvals),
                "decision": label,
                "allowed": bool(decision and decision.allowed),
                "effect": decision.effect.value if decision else None,
                "rule": list(decision.rule) if decision and decision.rule else None,
                "reason": decision.reason if decision else "evaluation error",
                "duration_ms": round(elapsed * 1000.0, 3),
            }
            try:
                self.logger_sink.log(payload)
            except Exception:
                logger.exception("ENFORCEX: decision logger failed")

    # ------------------------------------------------------------------ #
    # Policy management
    # ------------------------------------------------------------------ #

    def get_policy(self) -> List[List[str]]:
        with self._lock.read():
            return [list(r) for r in self._state.policies]

    def get_filtered_policy(self, field_index: int, *values: str) -> List[List[str]]:
        with self._lock.read():
            return [list(r) for r in self._state.policies.rules(field_index, *values)]

    def has_policy(self, *params: Any) -> bool:
        with self._lock.read():
            return self._state.policies.has(_params(params))

    def add_policy(self, *params: Any) -> bool:
        rule = _params(params)
        with self._lock.write():
            added = self._state.policies.add(rule)
        if added:
            logger.debug("ENFORCEX: policy added %s", rule)
        return added

    def add_policies(self, rules: Iterable[Sequence[str]]) -> bool:
        """Add all *rules*; True if at least one was new."""
        with self._lock.write():
            return bool(self._state.policies.add_many(rules))

    def remove_policy(self, *params: Any) -> bool:
        rule = _params(params)
        with self._lock.write():
            removed = self._state.policies.remove(rule)
        if removed:
            logger.debug("ENFORCEX: policy removed %s", rule)
        return removed

    def remove_policies(self, rules: Iterable[Sequence[str]]) -> bool:
        with self._lock.write():
            return bool(self._state.policies.remove_many(rules))

    def remove_filtered_policy(self, field_index: int, *values: str) -> bool:
        with self._lock.write():
            return bool(self._state.policies.remove_filtered(field_index, *values))

    # ------------------------------------------------------------------ #
    # Role management
    # ------------------------------------------------------------------ #

    def _grouping(self, state: _State, ptype: str) -> Tuple[PolicyStore, RoleGraph]:
        if ptype not in state.groupings:
            raise MutationError(f"model has no role definition {ptype!r}")
        return state.groupings[ptype], state.roles[ptype]

    def get_named_grouping_policy(self, ptype: str) -> List[List[str]]:
        with self._lock.read():
            store, _ = self._grouping(self._state, ptype)
            return [list(r) for r in store]

    def get_grouping_policy(self) -> List[List[str]]:
        return self.get_named_grouping_policy("g")

    def has_named_grouping_policy(self, ptype: str, *params: Any) -> bool:
        with self._lock.read():
            store, _ = self._grouping(self._state, ptype)
            return store.has(_params(params))

    def has_grouping_policy(self, *params: Any) -> bool:
        return self.has_named_grouping_policy("g", *params)

    def add_named_grouping_policy(self, ptype: str, *params: Any) -> bool:
        rule = _params(params)
        with self._lock.write():
            store, graph = self._grouping(self._state, ptype)
            if not store.add(rule):
                return False
            graph.add_link(*rule)
        logger.debug("ENFORCEX: role link added %s %s", ptype, rule)
        return True

    def add_grouping_policy(self, *params: Any) -> bool:
        return self.add_named_grouping_policy("g", *params)

    def add_named_grouping_policies(self, ptype: str, rules: Iterable[Sequence[str]]) -> bool:
        with self._lock.write():
            store, graph = self._grouping(self._state, ptype)
            added = store.add_many(rules)
            for rule in added:
                graph.add_link(*rule)
        return bool(added)

    def remove_named_grouping_policy(self, ptype: str, *params: Any) -> bool:
        rule = _params(params)
        with self._lock.write():
            store, graph = self._grouping(self._state, ptype)
            if not store.remove(rule):
                return False
            graph.remove_link(*rule)
        logger.debug("ENFORCEX: role link removed %s %s", ptype, rule)
        return True

    def remove_grouping_policy(self, *params: Any) -> bool:
        return self.remove_named_grouping_policy("g", *params)

    def remove_filtered_named_grouping_policy(self, ptype: str, field_index: int, *values: str) -> bool:
        with self._lock.write():
            store, graph = self._grouping(self._state, ptype)
            removed = store.remove_filtered(field_index, *values)
            for rule in removed:
                graph.remove_link(*rule)
        return bool(removed)

    def remove_filtered_grouping_policy(self, field_index: int, *values: str) -> bool:
        return self.remove_filtered_named_grouping_policy("g", field_index, *values)

    @staticmethod
    def _link(user: str, role: str, domain: Optional[str]) -> Tuple[str, ...]:
        return (user, role) if domain is None else (user, role, domain)

    def add_role_for_user(self, user: str, role: str, domain: Optional[str] = None) -> bool:
        return self.add_grouping_policy(self._link(user, role, domain))

    def delete_role_for_user(self, user: str, role: str, domain: Optional[str] = None) -> bool:
        return self.remove_grouping_policy(self._link(user, role, domain))

    def delete_roles_for_user(self, user: str, domain: Optional[str] = None) -> bool:
        if domain is None:
            return self.remove_filtered_grouping_policy(0, user)
        return self.remove_filtered_grouping_policy(0, user, "", domain)

    def get_roles_for_user(self, user: str, domain: Optional[str] = None) -> List[str]:
        """Roles assigned to *user* directly."""
        with self._lock.read():
            _, graph = self._grouping(self._state, "g")
            return graph.direct_roles_of(user, domain)

    def get_implicit_roles_for_user(self, user: str, domain: Optional[str] = None) -> List[str]:
        """Direct and inherited roles of *user*."""
        with self._lock.read():
            _, graph = self._grouping(self._state, "g")
            return sorted(graph.roles_of(user, domain))

    def get_users_for_role(self, role: str, domain: Optional[str] = None) -> List[str]:
        """Subjects assigned *role* directly."""
        with self._lock.read():
            store, _ = self._grouping(self._state, "g")
            values = (role,) if domain is None else (role, domain)
            return [r[0] for r in store.rules(1, *values)]

    def get_implicit_users_for_role(self, role: str, domain: Optional[str] = None) -> List[str]:
        with self._lock.read():
            _, graph = self._grouping(self._state, "g")
            return sorted(graph.users_of(role, domain))

    def has_role_for_user(self, user: str, role: str, domain: Optional[str] = None) -> bool:
        return role in self.get_roles_for_user(user, domain)

    def delete_user(self, user: str) -> bool:
        """Remove *user*'s role links and the policies naming it as subject."""
        with self._lock.write():
            state = self._state
            removed = False
            if "g" in state.groupings:
                for rule in state.groupings["g"].remove_filtered(0, user):
                    state.roles["g"].remove_link(*rule)
                    removed = True
            removed = bool(state.policies.remove_filtered(0, user)) or removed
        return removed

    def delete_role(self, role: str) -> bool:
        """Remove *role* from every link (as holder or held) and its policies."""
        with self._lock.write():
            state = self._state
            removed = False
            if "g" in state.groupings:
                store, graph = state.groupings["g"], state.roles["g"]
                for rule in store.remove_filtered(0, role) + store.remove_filtered(1, role):
                    graph.remove_link(*rule)
                    removed = True
            removed = bool(state.policies.remove_filtered(0, role)) or removed
        return removed

    def get_permissions_for_user(self, user: str, domain: Optional[str] = None) -> List[List[str]]:
        if domain is None:
            return self.get_filtered_policy(0, user)
        return self.get_filtered_policy(0, user, domain)

    def get_implicit_permissions_for_user(
        self, user: str, domain: Optional[str] = None
    ) -> List[List[str]]:
        subjects = [user, *self.get_implicit_roles_for_user(user, domain)]
        out: List[List[str]] = []
        for sub in subjects:
            out.extend(self.get_permissions_for_user(sub, domain))
        return out

    # ------------------------------------------------------------------ #
    # Pattern roles
    # ------------------------------------------------------------------ #

    def _resolve_func(self, func: Union[str, MatchFunc]) -> MatchFunc:
        if callable(func):
            return func
        registry = default_functions(self._state.model.options)
        spec = registry.get(func)
        if spec is None and self._functions is not None:
            spec = self._functions.get(func)
        if spec is None or spec.contextual:
            raise ValueError(f"unknown matching function {func!r}")
        return spec.fn

    def add_matching_func(self, func: Union[str, MatchFunc], ptype: str = "g") -> None:
        """Let role names in *ptype* links act as patterns (e.g. ``keyMatch2``)."""
        fn = self._resolve_func(func)
        with self._lock.write():
            _, graph = self._grouping(self._state, ptype)
            _, domain_fn = self._role_matchers.get(ptype, (None, None))
            self._role_matchers[ptype] = (fn, domain_fn)
            graph.matching_func = fn

    def add_domain_matching_func(self, func: Union[str, MatchFunc], ptype: str = "g") -> None:
        """Let domains in *ptype* links act as patterns (e.g. ``globMatch`` with ``*``)."""
        fn = self._resolve_func(func)
        with self._lock.write():
            _, graph = self._grouping(self._state, ptype)
            name_fn, _ = self._role_matchers.get(ptype, (None, None))
            self._role_matchers[ptype] = (name_fn, fn)
            graph.domain_matching_func = fn

    def __repr__(self) -> str:
        state = self._state
        return (
            f"Enforcer(effect={state.model.effect.value}, policies={len(state.policies)}, "
            f"roles={sum(len(g) for g in state.roles.values())})"
        )


__all__ = ["Enforcer", "Decision", "CompileError", "EvaluationError", "MutationError"]
