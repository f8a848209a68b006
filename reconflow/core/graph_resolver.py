"""Graph analysis: cycle detection, phased execution order, paths and statistics."""

from typing import Dict, List, Optional

from ..models.core import Connection, ExecutionStats, NodeStatus, WorkflowGraph
from .exceptions import GraphCycleError, SchedulingError
from .logging import get_logger

logger = get_logger(__name__)

GREY = 1
BLACK = 2


class GraphResolver:
    """
    Pure functions over a workflow graph snapshot.

    Nothing here mutates the graph it is given. Connections that reference
    unknown nodes are ignored when adjacency is built.
    """

    @staticmethod
    def _adjacency(graph: WorkflowGraph) -> Dict[str, List[str]]:
        node_ids = {node.id for node in graph.nodes}
        adjacency: Dict[str, List[str]] = {node.id: [] for node in graph.nodes}
        for connection in graph.connections:
            if connection.source in node_ids and connection.target in node_ids:
                if connection.target not in adjacency[connection.source]:
                    adjacency[connection.source].append(connection.target)
        return adjacency

    @staticmethod
    def _dependencies(graph: WorkflowGraph) -> Dict[str, List[str]]:
        node_ids = {node.id for node in graph.nodes}
        dependencies: Dict[str, List[str]] = {node.id: [] for node in graph.nodes}
        for connection in graph.connections:
            if connection.source in node_ids and connection.target in node_ids:
                if connection.source not in dependencies[connection.target]:
                    dependencies[connection.target].append(connection.source)
        return dependencies

    def _topological_order(self, graph: WorkflowGraph) -> List[str]:
        """Kahn order of the graph's nodes; nodes on a cycle are left out."""
        dependents = self._adjacency(graph)
        remaining = {node_id: len(deps) for node_id, deps in self._dependencies(graph).items()}
        order = [node.id for node in graph.nodes if remaining[node.id] == 0]

        index = 0
        while index < len(order):
            for dependent in dependents[order[index]]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    order.append(dependent)
            index += 1
        return order

    def find_cycle(self, graph: WorkflowGraph) -> Optional[List[str]]:
        """Return the node path of one cycle, or None if the graph is acyclic."""
        adjacency = self._adjacency(graph)
        # absent: unvisited, GREY: on the current path, BLACK: finished
        colour: Dict[str, int] = {}

        for node in graph.nodes:
            if node.id in colour:
                continue

            colour[node.id] = GREY
            path = [node.id]
            pending = [iter(adjacency[node.id])]
            while pending:
                neighbor = next(pending[-1], None)
                if neighbor is None:
                    colour[path.pop()] = BLACK
                    pending.pop()
                    continue

                state = colour.get(neighbor)
                if state == GREY:
                    return path[path.index(neighbor):] + [neighbor]
                if state is None:
                    colour[neighbor] = GREY
                    path.append(neighbor)
                    pending.append(iter(adjacency[neighbor]))
        return None

    def detect_cycles(self, graph: WorkflowGraph) -> None:
        """
        Raise if the graph contains a cycle.

        Raises:
            GraphCycleError: With the offending node path
        """
        cycle = self.find_cycle(graph)
        if cycle:
            logger.warning(f"Cycle detected in workflow '{graph.id}': {' -> '.join(cycle)}")
            raise GraphCycleError(
                "Workflow contains cycles, cannot execute",
                cycle_path=cycle,
                workflow_id=graph.id
            )

    def has_cycle(self, graph: WorkflowGraph) -> bool:
        return self.find_cycle(graph) is not None

    def resolve_execution_order(self, graph: WorkflowGraph) -> List[List[str]]:
        """
        Group the graph's nodes into phases of mutually independent nodes.

        Every node of a phase depends only on nodes of earlier phases, and sits
        one phase after the latest of them. Nodes already marked skipped are
        left out, and so is every node whose dependencies are all skipped.
        Inside a phase, nodes keep the order in which they appear in the graph.

        Raises:
            GraphCycleError: If the graph contains a cycle
            SchedulingError: If a node that is not skipped could not be placed
        """
        self.detect_cycles(graph)

        skipped = {node.id for node in graph.nodes if node.status == NodeStatus.SKIPPED}
        dependencies = self._dependencies(graph)
        levels: Dict[str, int] = {}

        for node_id in self._topological_order(graph):
            deps = dependencies[node_id]
            if node_id in skipped or (deps and all(dep in skipped for dep in deps)):
                skipped.add(node_id)
                continue
            levels[node_id] = 1 + max((levels[dep] for dep in deps if dep in levels), default=-1)

        missing = [node.id for node in graph.nodes if node.id not in levels and node.id not in skipped]
        if missing:
            raise SchedulingError(
                f"Some nodes could not be scheduled for execution: {', '.join(missing)}",
                node_ids=missing
            )

        phases: List[List[str]] = [[] for _ in range(max(levels.values(), default=-1) + 1)]
        for node in graph.nodes:
            if node.id in levels:
                phases[levels[node.id]].append(node.id)

        logger.debug(f"Resolved {len(levels)} nodes of workflow '{graph.id}' into {len(phases)} phases")
        return phases

    def would_create_cycle(self, graph: WorkflowGraph, connection: Connection) -> bool:
        """Check whether adding ``connection`` would close a cycle, without modifying ``graph``."""
        candidate = graph.model_copy(update={"connections": [*graph.connections, connection]})
        try:
            self.detect_cycles(candidate)
        except GraphCycleError:
            return True
        return False

    def find_paths(self, graph: WorkflowGraph, start_id: str, end_id: str) -> List[List[str]]:
        """All simple paths from ``start_id`` to ``end_id``."""
        adjacency = self._adjacency(graph)
        if start_id not in adjacency or end_id not in adjacency:
            return []

        paths: List[List[str]] = []
        pending = [[start_id]]
        while pending:
            path = pending.pop()
            if path[-1] == end_id:
                paths.append(path)
                continue
            for neighbor in reversed(adjacency[path[-1]]):
                if neighbor not in path:
                    pending.append(path + [neighbor])
        return paths

    def get_dependencies(self, graph: WorkflowGraph, node_id: str) -> List[str]:
        return self._dependencies(graph).get(node_id, [])

    def get_dependents(self, graph: WorkflowGraph, node_id: str) -> List[str]:
        return self._adjacency(graph).get(node_id, [])

    def get_critical_path(self, graph: WorkflowGraph) -> List[str]:
        """Longest root-to-leaf path by node count."""
        adjacency = self._adjacency(graph)
        dependencies = self._dependencies(graph)
        length: Dict[str, int] = {}
        successor: Dict[str, Optional[str]] = {}

        for node_id in reversed(self._topological_order(graph)):
            best: Optional[str] = None
            for neighbor in adjacency[node_id]:
                if neighbor in length and (best is None or length[neighbor] > length[best]):
                    best = neighbor
            successor[node_id] = best
            length[node_id] = 1 + (length[best] if best is not None else 0)

        start: Optional[str] = None
        for node in graph.nodes:
            if not dependencies[node.id] and (start is None or length[node.id] > length[start]):
                start = node.id

        path: List[str] = []
        while start is not None:
            path.append(start)
            start = successor[start]
        return path

    def get_execution_stats(self, graph: WorkflowGraph) -> ExecutionStats:
        """
        Summarize the execution plan of an acyclic graph.

        Raises:
            GraphCycleError: If the graph contains a cycle
        """
        phases = self.resolve_execution_order(graph)
        total = sum(len(phase) for phase in phases)
        return ExecutionStats(
            total_nodes=total,
            phases=len(phases),
            max_parallelism=max((len(phase) for phase in phases), default=0),
            avg_parallelism=round(total / len(phases), 2) if phases else 0.0,
            critical_path=self.get_critical_path(graph)
        )
