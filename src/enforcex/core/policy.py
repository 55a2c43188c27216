from __future__ import annotations

import bisect
import math
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import MutationError

Rule = Tuple[str, ...]


def _matches_filter(rule: Rule, field_index: int, values: Sequence[str]) -> bool:
    for offset, value in enumerate(values):
        if value != "" and rule[field_index + offset] != value:
            return False
    return True


class RuleView:
    """Lazy, restartable view over a store's rules.

    Each ``iter()`` starts a fresh pass; the view reflects the store at
    iteration time.
    """

    __slots__ = ("_store", "_field_index", "_values")

    def __init__(self, store: "PolicyStore", field_index: int = 0, values: Sequence[str] = ()):
        self._store = store
        self._field_index = field_index
        self._values = tuple(values)

    def __iter__(self) -> Iterator[Rule]:
        source = self._store._ordered()
        if not self._values:
            return iter(source)
        fi, vals = self._field_index, self._values
        return (r for r in source if _matches_filter(r, fi, vals))

    def __repr__(self) -> str:
        return f"RuleView(field_index={self._field_index}, values={self._values!r})"


class PolicyStore:
    """Deduplicated set of policy rules of a fixed arity.

    Insertion order is kept. When *priority_index* is given, iteration is by
    ascending numeric priority with ties broken by insertion order.
    Single mutations cost O(log n) lookups plus list insertion.

    Not thread-safe on its own; :class:`~enforcex.core.enforcer.Enforcer`
    serializes access.
    """

    def __init__(
        self,
        arity: int,
        rules: Iterable[Sequence[str]] = (),
        *,
        priority_index: Optional[int] = None,
    ) -> None:
        if priority_index is not None and not 0 <= priority_index < arity:
            raise ValueError("priority_index out of range")
        self.arity = arity
        self.priority_index = priority_index
        self._rules: Dict[Rule, Tuple[float, int]] = {}
        self._order: List[Tuple[float, int, Rule]] = []
        self._seq = 0
        if rules:
            self.load(rules)

    # --- validation -----------------------------------------------------------

    def _check(self, rule: Sequence[str]) -> Rule:
        values = tuple(rule)
        if len(values) != self.arity:
            raise MutationError(
                f"rule {list(values)!r} has {len(values)} fields, expected {self.arity}"
            )
        for v in values:
            if not isinstance(v, str):
                raise MutationError(f"rule {list(values)!r} contains a non-string value")
        return values

    def _priority(self, rule: Rule) -> float:
        if self.priority_index is None:
            return 0.0
        raw = rule[self.priority_index]
        try:
            prio = float(raw)
        except ValueError:
            prio = math.nan
        if not math.isfinite(prio):
            raise MutationError(
                f"rule {list(rule)!r} has a non-numeric or non-finite priority {raw!r}"
            )
        return prio

    # --- internals ------------------------------------------------------------

    def _insert(self, rule: Rule, prio: float) -> None:
        key = (prio, self._seq)
        self._seq += 1
        self._rules[rule] = key
        if self.priority_index is not None:
            bisect.insort(self._order, (prio, key[1], rule))

    def _delete(self, rule: Rule) -> None:
        key = self._rules[rule]
        if self.priority_index is not None:
            idx = bisect.bisect_left(self._order, key)
            if idx == len(self._order) or self._order[idx][2] != rule:
                raise RuntimeError(f"priority order out of sync for {list(rule)!r}")
            del self._order[idx]
        del self._rules[rule]

    def _ordered(self) -> Iterable[Rule]:
        if self.priority_index is None:
            return self._rules.keys()
        return (entry[2] for entry in self._order)

    # --- public API -----------------------------------------------------------

    def load(self, rules: Iterable[Sequence[str]]) -> None:
        """Replace every rule; on error nothing changes."""
        checked = [self._check(r) for r in rules]
        prios = [self._priority(r) for r in checked]
        rules_map: Dict[Rule, Tuple[float, int]] = {}
        order: List[Tuple[float, int, Rule]] = []
        for seq, (rule, prio) in enumerate(zip(checked, prios)):
            if rule in rules_map:
                continue
            rules_map[rule] = (prio, seq)
            order.append((prio, seq, rule))
        order.sort()
        self._rules = rules_map
        self._order = order if self.priority_index is not None else []
        self._seq = len(checked)

    def add(self, rule: Sequence[str]) -> bool:
        values = self._check(rule)
        if values in self._rules:
            return False
        self._insert(values, self._priority(values))
        return True

    def add_many(self, rules: Iterable[Sequence[str]]) -> List[Rule]:
        """Add every rule not yet present; validate all before touching anything."""
        checked = [self._check(r) for r in rules]
        prios = [self._priority(r) for r in checked]
        added: List[Rule] = []
        for rule, prio in zip(checked, prios):
            if rule not in self._rules:
                self._insert(rule, prio)
                added.append(rule)
        return added

    def remove(self, rule: Sequence[str]) -> bool:
        values = self._check(rule)
        if values not in self._rules:
            return False
        self._delete(values)
        return True

    def remove_many(self, rules: Iterable[Sequence[str]]) -> List[Rule]:
        checked = [self._check(r) for r in rules]
        removed: List[Rule] = []
        for rule in checked:
            if rule in self._rules:
                self._delete(rule)
                removed.append(rule)
        return removed

    def _check_filter(self, field_index: int, values: Sequence[str]) -> None:
        if field_index < 0 or field_index + len(values) > self.arity:
            raise MutationError(
                f"filter at field {field_index} with {len(values)} value(s) "
                f"does not fit rules of arity {self.arity}"
            )

    def remove_filtered(self, field_index: int, *values: str) -> List[Rule]:
        """Remove rules whose fields from *field_index* equal *values* ("" = any)."""
        self._check_filter(field_index, values)
        doomed = [r for r in self._rules if _matches_filter(r, field_index, values)]
        for rule in doomed:
            self._delete(rule)
        return doomed

    def rules(self, field_index: int = 0, *values: str) -> RuleView:
        """Lazy view of the rules matching the filter; a filter wider than the arity is a MutationError."""
        self._check_filter(field_index, values)
        return RuleView(self, field_index, values)

    def has(self, rule: Sequence[str]) -> bool:
        return tuple(rule) in self._rules

    def clear(self) -> None:
        self._rules, self._order, self._seq = {}, [], 0

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._ordered())

    def __contains__(self, rule: object) -> bool:
        return isinstance(rule, (tuple, list)) and tuple(rule) in self._rules


__all__ = ["PolicyStore", "Rule", "RuleView"]
