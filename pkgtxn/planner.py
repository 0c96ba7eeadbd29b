"""Transaction ordering.

Items become nodes of an arena graph (integer indices, adjacency lists) and
are emitted in topological order. Nodes are numbered by their stable key
``(name, arch, action_priority)``, so the smallest ready index is always the
deterministic tie-break.

Edges:
- an obsoleting install precedes the removal of what it obsoletes
- ``install_before`` / ``remove_after`` hints declared by packages
- an install precedes installs that require one of its capabilities, and a
  removal precedes the removal of packages it requires

Cycles never fail a transaction: the cycle edge whose source sorts last is
dropped, an ORDERING_CYCLE advisory is reported and the graph is re-sorted.
"""

import heapq
import logging
from dataclasses import dataclass, field, replace

from .errors import ContractViolation
from .models import ItemAction, Problem, ProblemKind, TransactionPackage, TransactionState
from .transaction import Transaction

_logging = logging.getLogger(__name__)


@dataclass
class PlanResult:
    transaction: Transaction | None = None
    problems: list[Problem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.transaction is not None


class OrderingGraph:
    """Directed graph over integer node ids."""

    def __init__(self, size: int):
        self.size = size
        self.successors: list[list[int]] = [[] for _ in range(size)]

    def add_edge(self, source: int, target: int) -> None:
        if source != target and target not in self.successors[source]:
            self.successors[source].append(target)

    def remove_edge(self, source: int, target: int) -> None:
        self.successors[source].remove(target)

    def has_edge(self, source: int, target: int) -> bool:
        return target in self.successors[source]

    def topological_order(self) -> tuple[list[int], set[int]]:
        """Kahn's algorithm; returns the emitted order and the stuck nodes."""
        indegree = [0] * self.size
        for targets in self.successors:
            for target in targets:
                indegree[target] += 1

        ready = [node for node in range(self.size) if indegree[node] == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for target in self.successors[node]:
                indegree[target] -= 1
                if indegree[target] == 0:
                    heapq.heappush(ready, target)

        return order, set(range(self.size)) - set(order)

    def find_cycle(self, nodes: set[int]) -> list[int]:
        """Return one cycle within ``nodes``, found by depth-first search
        from the smallest node with successors explored in ascending order."""
        state: dict[int, int] = {}
        for start in sorted(nodes):
            if start in state:
                continue
            path = [start]
            state[start] = 1
            stack = [iter(sorted(t for t in self.successors[start] if t in nodes))]
            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    stack.pop()
                    state[path.pop()] = 2
                    continue
                if state.get(nxt) == 1:
                    return path[path.index(nxt):]
                if nxt not in state:
                    state[nxt] = 1
                    path.append(nxt)
                    stack.append(iter(sorted(t for t in self.successors[nxt] if t in nodes)))
        return []


def _conflicting_actions(items: list[TransactionPackage]) -> list[Problem]:
    slots: dict[tuple[str, str], list[TransactionPackage]] = {}
    for item in items:
        slots.setdefault(item.key, []).append(item)

    problems = []
    for (name, arch), group in sorted(slots.items()):
        primary = [item for item in group if item.action is not ItemAction.REPLACED]
        if len(primary) > 1:
            actions = ", ".join(str(item) for item in primary)
            problems.append(Problem(
                kind=ProblemKind.CONFLICTS,
                implicated=tuple(item.package for item in primary),
                message=f"conflicting actions for {name}.{arch}: {actions}",
            ))
    return problems


class TransactionPlanner:
    """Computes a deterministic, dependency-safe execution order."""

    def order(self, action_set) -> PlanResult:
        """Order a Transaction or an iterable of TransactionPackage.

        A Transaction keeps its id; a new one is created otherwise.
        """
        if isinstance(action_set, Transaction):
            if action_set.state is not TransactionState.CREATED:
                raise ContractViolation(
                    f"Transaction {action_set.id} can only be ordered before it starts"
                )
            source_items = list(action_set.items)
            transaction_id = action_set.id
            carried = list(action_set.problems)
        else:
            source_items = list(action_set)
            transaction_id = 0
            carried = []

        conflicts = _conflicting_actions(source_items)
        if conflicts:
            return PlanResult(transaction=None, problems=conflicts)

        nodes = sorted(source_items, key=lambda item: item.sort_key() + (item.package.nevra,))
        graph = self._build_graph(nodes)

        problems = [p for p in carried if p.kind is not ProblemKind.ORDERING_CYCLE]
        while True:
            order, stuck = graph.topological_order()
            if not stuck:
                break
            cycle = graph.find_cycle(stuck)
            edges = list(zip(cycle, cycle[1:] + cycle[:1]))
            source, target = max(edges)
            graph.remove_edge(source, target)

            path = " -> ".join(nodes[i].package.nevra for i in cycle + cycle[:1])
            message = (
                f"ordering cycle {path}; dropped ordering of "
                f"{nodes[source].package.nevra} before {nodes[target].package.nevra}"
            )
            _logging.warning(message)
            problems.append(Problem(
                kind=ProblemKind.ORDERING_CYCLE,
                implicated=tuple(nodes[i].package for i in cycle),
                message=message,
            ))

        ordered = [replace(nodes[node], order_index=position) for position, node in enumerate(order)]
        transaction = Transaction(items=ordered, problems=problems, id=transaction_id)
        return PlanResult(transaction=transaction, problems=problems)

    def _build_graph(self, nodes: list[TransactionPackage]) -> OrderingGraph:
        graph = OrderingGraph(len(nodes))
        by_name: dict[str, list[int]] = {}
        for i, item in enumerate(nodes):
            by_name.setdefault(item.package.name, []).append(i)

        inbound = [i for i, item in enumerate(nodes) if item.action.is_inbound]
        outbound = [i for i, item in enumerate(nodes) if not item.action.is_inbound]

        for i in outbound:
            item = nodes[i]
            for j in inbound:
                replacer = nodes[j].package
                if item.action in (ItemAction.OBSOLETE, ItemAction.REPLACED) and replacer in item.replaces:
                    graph.add_edge(j, i)
                elif any(r.satisfied_by(item.package.self_provide) for r in replacer.obsoletes):
                    graph.add_edge(j, i)

        for i, item in enumerate(nodes):
            if item.action.is_inbound:
                for name in item.package.install_before:
                    for j in by_name.get(name, []):
                        graph.add_edge(i, j)
            else:
                for name in item.package.remove_after:
                    for j in by_name.get(name, []):
                        graph.add_edge(j, i)

        for i in inbound:
            for requirement in nodes[i].package.requires:
                for j in inbound:
                    if j != i and nodes[j].package.provides_capability(requirement):
                        graph.add_edge(j, i)
        for i in outbound:
            for requirement in nodes[i].package.requires:
                for j in outbound:
                    if j != i and nodes[j].package.provides_capability(requirement):
                        graph.add_edge(i, j)

        return graph


__all__ = [
    "OrderingGraph",
    "PlanResult",
    "TransactionPlanner",
]
