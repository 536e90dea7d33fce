"""Dependency ordering for active rules.

Builds a graph over the active rules' targets from their declared
dependencies, validates every reference and returns an evaluation order
where each component comes after everything it depends on.

Example:
    resolver = DependencyResolver()
    order = resolver.order(rule_set.active_rule_index(day), inputs.keys())
    # order is ["Base", "Bonus", ...]: dependencies before dependents
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from salary_engine.calculators.errors import CyclicDependencyError, UnresolvedDependencyError
from salary_engine.calculators.expressions import component_refs, input_refs
from salary_engine.calculators.types import Rule


@dataclass
class DependencyGraph:
    """Directed graph of component dependencies.

    Supports:
    - Adding components with their dependencies and a tie-break rank
    - Querying dependencies
    - Topological sorting for evaluation order
    - Reporting the members of dependency cycles
    """

    _adjacency: dict[str, list[str]] = field(default_factory=dict)
    _rank: dict[str, int] = field(default_factory=dict)

    def add_component(self, name: str, dependencies: list[str], rank: int | None = None) -> None:
        """Add a component and the components it depends on.

        Args:
            name: Component target
            dependencies: Targets this component reads
            rank: Tie-break position (lower evaluates first); defaults to
                insertion order
        """
        self._adjacency[name] = list(dict.fromkeys(dependencies))
        self._rank[name] = len(self._rank) if rank is None else rank
        for dep in dependencies:
            if dep not in self._adjacency:
                self._adjacency[dep] = []
                self._rank.setdefault(dep, len(self._rank))

    def get_dependencies(self, name: str) -> list[str]:
        return self._adjacency.get(name, [])

    def topological_sort(self) -> list[str]:
        """Return components in evaluation order (dependencies first).

        Independent components are ordered by rank.

        Raises:
            CyclicDependencyError: If any component depends on itself,
                directly or transitively
        """
        # Kahn's algorithm with a rank-ordered ready queue
        dependents: dict[str, list[str]] = {node: [] for node in self._adjacency}
        for node, deps in self._adjacency.items():
            for dep in deps:
                dependents[dep].append(node)

        in_degree = {node: len(deps) for node, deps in self._adjacency.items()}
        ready = [(self._rank[node], node) for node, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        result: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            result.append(node)
            for dependent in dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (self._rank[dependent], dependent))

        if len(result) != len(self._adjacency):
            raise CyclicDependencyError(self.cycle_members())

        return result

    def cycle_members(self) -> list[str]:
        """Components that sit on a dependency cycle, in rank order.

        Components that merely depend on a cycle are not members.
        """
        members: set[str] = set()
        for component in self._strongly_connected_components():
            if len(component) > 1:
                members.update(component)
            elif component[0] in self._adjacency[component[0]]:
                members.add(component[0])
        return sorted(members, key=lambda node: self._rank[node])

    def _strongly_connected_components(self) -> list[list[str]]:
        # Tarjan's algorithm
        index: dict[str, int] = {}
        low: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        components: list[list[str]] = []

        def visit(node: str) -> None:
            index[node] = low[node] = len(index)
            stack.append(node)
            on_stack.add(node)
            for dep in self._adjacency[node]:
                if dep not in index:
                    visit(dep)
                    low[node] = min(low[node], low[dep])
                elif dep in on_stack:
                    low[node] = min(low[node], index[dep])
            if low[node] == index[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

        for node in sorted(self._adjacency, key=lambda n: self._rank[n]):
            if node not in index:
                visit(node)
        return components


class DependencyResolver:
    """Validates rule references and orders active rules for evaluation.

    Reference rules:
    - Every component an expression reads must be listed in depends_on
    - Every depends_on entry must be an active rule target or a context input
    - Every input an expression reads must be a context input
    """

    def build_graph(
        self,
        active_rules: Mapping[str, Rule],
        input_names: Iterable[str],
        declaration_order: Mapping[str, int] | None = None,
    ) -> DependencyGraph:
        """Validate references and build the dependency graph.

        Raises:
            UnresolvedDependencyError: For the first unresolvable reference
        """
        inputs = set(input_names)
        graph = DependencyGraph()

        ordered = self._in_declaration_order(active_rules, declaration_order)
        for position, (target, rule) in enumerate(ordered):
            declared = set(rule.depends_on)

            for name in component_refs(rule.expression):
                if name not in declared:
                    raise UnresolvedDependencyError(
                        target, name, rule, reason="not declared in depends_on"
                    )
                if name not in active_rules:
                    raise UnresolvedDependencyError(
                        target, name, rule, reason="no active rule produces it"
                    )

            for name in input_refs(rule.expression):
                if name not in inputs:
                    raise UnresolvedDependencyError(target, name, rule, reason="no such input")

            component_deps: list[str] = []
            for dep in rule.depends_on:
                if dep in active_rules:
                    component_deps.append(dep)
                elif dep not in inputs:
                    raise UnresolvedDependencyError(
                        target, dep, rule, reason="neither an active component nor an input"
                    )

            rank = declaration_order.get(target, position) if declaration_order else position
            graph.add_component(target, component_deps, rank)

        return graph

    def order(
        self,
        active_rules: Mapping[str, Rule],
        input_names: Iterable[str],
        declaration_order: Mapping[str, int] | None = None,
    ) -> list[str]:
        """Return active targets in evaluation order.

        Args:
            active_rules: Target -> the rule active on the evaluation date
            input_names: Names available from the evaluation context
            declaration_order: Tie-break rank per target; defaults to the
                iteration order of ``active_rules``

        Raises:
            UnresolvedDependencyError: If a reference cannot be resolved
            CyclicDependencyError: If active components form a cycle
        """
        graph = self.build_graph(active_rules, input_names, declaration_order)
        return graph.topological_sort()

    @staticmethod
    def _in_declaration_order(
        active_rules: Mapping[str, Rule], declaration_order: Mapping[str, int] | None
    ) -> list[tuple[str, Rule]]:
        items = list(active_rules.items())
        if declaration_order:
            items.sort(key=lambda item: declaration_order.get(item[0], len(declaration_order)))
        return items
