from typing import TYPE_CHECKING

from networkx import DiGraph, generate_network_text

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping, Sequence


class Topology:
    """
    The dependency digraph reachable from a target projection. Edges point from a
    dependency to the projection that consumes it.
    """

    def __init__(self, *, digraph: DiGraph, target: str) -> None:
        self.digraph = digraph
        self.target = target

    @classmethod
    def from_dependency_map(
        cls, dependency_map: "Mapping[str, Sequence[str]]", target: str
    ) -> "Topology":
        digraph = DiGraph()
        digraph.add_node(target)

        pending = [target]
        while pending:
            node = pending.pop()
            for dep in dependency_map.get(node, ()):
                if dep not in digraph:
                    pending.append(dep)

                digraph.add_edge(dep, node)

        return cls(digraph=digraph, target=target)

    def conflicts(self, stage: "Sequence[str]") -> list[tuple[str, str]]:
        """Dependency edges between members of the same stage."""
        return sorted(self.digraph.subgraph(stage).edges)

    def __str__(self) -> str:
        return "\n".join(generate_network_text(self.digraph, vertical_chains=True))
