"""
Dependency resolution for services to determine startup and shutdown order.
"""
import heapq
from typing import Dict, Iterable, List, Sequence

from ..MODELS.service_spec import ServiceSpec
from ..errors import CycleError, UnknownDependencyError

UP = "up"
DOWN = "down"


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.

    The graph is built once from the specs: ``requires`` maps a service to the
    services it must start after, ``dependents`` is the reverse edge set.
    """

    def __init__(self, specs: Sequence[ServiceSpec]):
        self.specs = list(specs)
        self.index = {svc.name: i for i, svc in enumerate(self.specs)}
        self.requires: Dict[str, List[str]] = {}
        self.dependents: Dict[str, List[str]] = {svc.name: [] for svc in self.specs}
        for svc in self.specs:
            deps = []
            for dep in svc.depends_on:
                if dep not in self.index:
                    raise UnknownDependencyError(dep, service=svc.name)
                if dep not in deps:
                    deps.append(dep)
                    self.dependents[dep].append(svc.name)
            self.requires[svc.name] = deps

    def resolve_order(self) -> List[ServiceSpec]:
        """
        Determines the order to start services using Kahn's algorithm.
        Among services that are ready at the same time, the one declared first wins.

        :return: Services in the order they should be started.
        :raises CycleError: If the dependencies contain a cycle.
        """
        pending = {name: len(deps) for name, deps in self.requires.items()}
        ready = [self.index[name] for name, count in pending.items() if count == 0]
        heapq.heapify(ready)

        ordered = []
        while ready:
            svc = self.specs[heapq.heappop(ready)]
            ordered.append(svc)
            for dependent in self.dependents[svc.name]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, self.index[dependent])

        if len(ordered) < len(self.specs):
            raise CycleError(self.find_cycle({n for n, count in pending.items() if count > 0}))
        return ordered

    def find_cycle(self, remaining) -> List[str]:
        """
        Follows unresolved dependency edges from the first declared remaining
        service until a name repeats.

        :return: The cycle, starting at its first declared member and ending
            with that member again.
        """
        start = min(remaining, key=self.index.__getitem__)
        path = [start]
        while True:
            current = path[-1]
            nxt = next(dep for dep in self.requires[current] if dep in remaining)
            if nxt in path:
                cycle = path[path.index(nxt):]
                break
            path.append(nxt)
        first = cycle.index(min(cycle, key=self.index.__getitem__))
        cycle = cycle[first:] + cycle[:first]
        return cycle + [cycle[0]]

    def closure(self, names: Iterable[str], direction: str = UP) -> List[ServiceSpec]:
        """
        Selects the named services plus everything they transitively depend on
        (``up``) or everything that transitively depends on them (``down``).

        :return: Selected services in declaration order.
        :raises UnknownDependencyError: If a name is not declared.
        """
        edges = self.requires if direction == UP else self.dependents
        selected = set()
        stack = []
        for name in names:
            if name not in self.index:
                raise UnknownDependencyError(name)
            stack.append(name)
        while stack:
            name = stack.pop()
            if name in selected:
                continue
            selected.add(name)
            stack.extend(edges[name])
        return [svc for svc in self.specs if svc.name in selected]


def order(specs: Sequence[ServiceSpec]) -> List[ServiceSpec]:
    return DependencyResolver(specs).resolve_order()


def teardown_order(specs: Sequence[ServiceSpec]) -> List[ServiceSpec]:
    """
    The exact reverse of the bring-up order.
    """
    return list(reversed(order(specs)))


def closure(specs: Sequence[ServiceSpec], names: Iterable[str], direction: str = UP) -> List[ServiceSpec]:
    return DependencyResolver(specs).closure(names, direction)
