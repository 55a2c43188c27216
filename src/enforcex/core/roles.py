from __future__ import annotations

from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

MatchFunc = Callable[[str, str], bool]

DEFAULT_DOMAIN = ""

_Edges = Dict[str, Dict[str, None]]  # node -> ordered set of neighbours


def _dom(domain: Optional[str]) -> str:
    return DEFAULT_DOMAIN if domain is None else domain


class RoleGraph:
    """Directed has-role / inherits-role graph partitioned by domain.

    ``add_link("alice", "admin")`` means alice has role admin; roles may in
    turn inherit other roles. Queries are breadth-first with a visited set,
    so cycles terminate and cost is O(V + E) of the traversed part.

    *matching_func(name, pattern)* lets stored names act as patterns (e.g.
    ``/book/:id``); *domain_matching_func(domain, pattern)* does the same for
    domains (e.g. a ``*`` domain visible from every domain).

    Not thread-safe on its own; :class:`~enforcex.core.enforcer.Enforcer`
    serializes access.
    """

    def __init__(
        self,
        *,
        matching_func: Optional[MatchFunc] = None,
        domain_matching_func: Optional[MatchFunc] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        self.matching_func = matching_func
        self.domain_matching_func = domain_matching_func
        self.max_depth = max_depth
        self._up: Dict[str, _Edges] = {}
        self._down: Dict[str, _Edges] = {}

    # --- mutation -------------------------------------------------------------

    def add_link(self, child: str, parent: str, domain: Optional[str] = None) -> bool:
        d = _dom(domain)
        parents = self._up.setdefault(d, {}).setdefault(child, {})
        if parent in parents:
            return False
        parents[parent] = None
        self._down.setdefault(d, {}).setdefault(parent, {})[child] = None
        return True

    def remove_link(self, child: str, parent: str, domain: Optional[str] = None) -> bool:
        d = _dom(domain)
        parents = self._up.get(d, {}).get(child)
        if not parents or parent not in parents:
            return False
        del parents[parent]
        children = self._down[d][parent]
        del children[child]
        if not parents:
            del self._up[d][child]
        if not children:
            del self._down[d][parent]
        if not self._up[d]:
            del self._up[d]
            del self._down[d]
        return True

    def clear(self) -> None:
        self._up.clear()
        self._down.clear()

    # --- queries --------------------------------------------------------------

    def _domains_for(self, domain: Optional[str]) -> List[str]:
        d = _dom(domain)
        if self.domain_matching_func is None:
            return [d] if d in self._up else []
        match = self.domain_matching_func
        return [k for k in self._up if k == d or match(d, k)]

    def _neighbours(
        self, edges: Iterable[_Edges], name: str, match: Optional[MatchFunc]
    ) -> Iterable[str]:
        for table in edges:
            direct = table.get(name)
            if direct:
                yield from direct
            if match is not None:
                for key, targets in table.items():
                    if key != name and match(name, key):
                        yield from targets

    def _walk(
        self, start: str, edges: List[_Edges], match: Optional[MatchFunc]
    ) -> Dict[str, int]:
        """Breadth-first reachability; returns node -> depth, start excluded."""
        seen: Dict[str, int] = {start: 0}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            depth = seen[node]
            if self.max_depth is not None and depth >= self.max_depth:
                continue
            for nxt in self._neighbours(edges, node, match):
                if nxt not in seen:
                    seen[nxt] = depth + 1
                    queue.append(nxt)
        del seen[start]
        return seen

    def has_link(self, name1: str, name2: str, domain: Optional[str] = None) -> bool:
        """True if *name1* is *name2* or reaches it through role links."""
        if name1 == name2:
            return True
        if self.matching_func is not None and self.matching_func(name1, name2):
            return True
        edges = [self._up[d] for d in self._domains_for(domain)]
        if not edges:
            return False
        return name2 in self._walk(name1, edges, self.matching_func)

    def roles_of(self, name: str, domain: Optional[str] = None) -> Set[str]:
        """Every role *name* holds, directly or through inheritance."""
        edges = [self._up[d] for d in self._domains_for(domain)]
        roles = set(self._walk(name, edges, self.matching_func)) if edges else set()
        roles.discard(name)
        return roles

    def direct_roles_of(self, name: str, domain: Optional[str] = None) -> List[str]:
        out: Dict[str, None] = {}
        for d in self._domains_for(domain):
            out.update(self._up[d].get(name, {}))
        return list(out)

    def users_of(self, role: str, domain: Optional[str] = None) -> Set[str]:
        """Every subject or role that holds *role*, directly or transitively."""
        edges = [self._down[d] for d in self._domains_for(domain)]
        if not edges:
            return set()
        users = set(self._walk(role, edges, None))
        users.discard(role)
        return users

    def domains(self) -> List[str]:
        return list(self._up)

    def links(self) -> List[Tuple[str, str, str]]:
        return [
            (child, parent, d)
            for d, table in self._up.items()
            for child, parents in table.items()
            for parent in parents
        ]

    def __len__(self) -> int:
        return sum(len(parents) for table in self._up.values() for parents in table.values())

    def __repr__(self) -> str:
        return f"RoleGraph(links={len(self)}, domains={len(self._up)})"


__all__ = ["RoleGraph", "DEFAULT_DOMAIN", "MatchFunc"]
