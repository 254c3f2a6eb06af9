"""
Explicit resource graph for a deployable topology.

Every declared resource is a Node with a typed spec (a ``<module>.<Class>``
name from pulumi_aws plus its arguments). Edges are explicit: a ``Ref`` inside
the arguments points at another node's resolved attribute, and ``depends_on``
lists ordering-only edges. The evaluation order is computed from those edges
with a topological sort, so the order in which declarations happen to be
written has no bearing on the order in which resources are materialised.

The Topology object is the context value every declaration receives. It owns
the graph and its outputs and is sealed once the caller is done declaring.
"""

import heapq
import yaml
import pulumi
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

class TopologyError(ValueError):
    """Raised for malformed declarations detected before anything is deployed."""

@dataclass(frozen=True)
class Ref:
    node_id: str
    attribute: str = "id"

    def __str__(self) -> str:
        return f"{self.node_id}.{self.attribute}"

@dataclass(frozen=True)
class Pseudo:
    name: str

REGION = Pseudo("region")
PARTITION = Pseudo("partition")

@dataclass(frozen=True)
class Join:
    parts: Tuple[Any, ...]

    def __init__(self, *parts: Any):
        object.__setattr__(self, "parts", tuple(parts))

@dataclass(frozen=True)
class Statement:
    actions: Tuple[str, ...]
    resources: Tuple[Any, ...] = ("*",)
    effect: str = "Allow"

@dataclass(frozen=True)
class PolicyDocument:
    statements: Tuple[Any, ...]
    version: str = "2012-10-17"

    @classmethod
    def trust(cls, service: str) -> "PolicyDocument":
        """Trust policy letting exactly one service principal assume a role."""
        return cls(statements=({
            "Action": "sts:AssumeRole",
            "Effect": "Allow",
            "Principal": {"Service": service},
        },))

    def actions(self) -> Tuple[str, ...]:
        found: List[str] = []
        for statement in self.statements:
            if isinstance(statement, Statement):
                found.extend(statement.actions)
            else:
                action = statement.get("Action", [])
                found.extend([action] if isinstance(action, str) else action)
        return tuple(found)

@dataclass(frozen=True)
class BootScript:
    commands: Tuple[Any, ...]
    shebang: str = "#!/bin/bash -ex"

    def render(self) -> Join:
        lines: List[Any] = [self.shebang]
        for command in self.commands:
            lines.extend(["\n", command])
        return Join(*lines)

@dataclass(frozen=True)
class Node:
    id: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()
    lookup: bool = False

@dataclass(frozen=True)
class OutputSpec:
    name: str
    value: Any
    description: str = ""

def iter_refs(value: Any) -> Iterator[Ref]:
    """Yield every Ref reachable from a declared value, in encounter order."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Join):
        for part in value.parts:
            yield from iter_refs(part)
    elif isinstance(value, Statement):
        for resource in value.resources:
            yield from iter_refs(resource)
    elif isinstance(value, PolicyDocument):
        for statement in value.statements:
            yield from iter_refs(statement)
    elif isinstance(value, BootScript):
        for command in value.commands:
            yield from iter_refs(command)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)

def statement_to_dict(statement: Any) -> Dict[str, Any]:
    if not isinstance(statement, Statement):
        return dict(statement)
    resources = list(statement.resources)
    return {
        "Effect": statement.effect,
        "Action": list(statement.actions),
        "Resource": resources[0] if len(resources) == 1 else resources,
    }

def to_plain(value: Any) -> Any:
    """Serialise a declared value into plain data for the template."""
    if isinstance(value, Ref):
        return {"ref": str(value)}
    elif isinstance(value, Pseudo):
        return {"pseudo": value.name}
    elif isinstance(value, Join):
        return {"join": [to_plain(part) for part in value.parts]}
    elif isinstance(value, PolicyDocument):
        return {
            "Version": value.version,
            "Statement": [to_plain(statement_to_dict(s)) for s in value.statements],
        }
    elif isinstance(value, BootScript):
        return to_plain(value.render())
    elif isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value

class Topology:
    """Context value owning the declared graph of one deployable environment."""

    def __init__(self, name: str, region: str, tags: Optional[Dict[str, str]] = None):
        self.name = name
        self.region = region
        self.tags = dict(tags or {})
        self._nodes: Dict[str, Node] = {}
        self._outputs: Dict[str, OutputSpec] = {}
        self._sealed = False

    def __enter__(self) -> "Topology":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.seal()
        return False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def _check_open(self, what: str) -> None:
        if self._sealed:
            raise TopologyError(f"Topology '{self.name}' is sealed; cannot declare {what}")

    def add(self, node: Node) -> Node:
        self._check_open(f"resource '{node.id}'")
        if node.id in self._nodes:
            raise TopologyError(f"Resource '{node.id}' is already declared")
        self._nodes[node.id] = node
        pulumi.log.debug(f"Declared {node.type} '{node.id}'")
        return node

    def output(self, name: str, value: Any, description: str = "") -> OutputSpec:
        self._check_open(f"output '{name}'")
        if name in self._outputs:
            raise TopologyError(f"Output '{name}' is already declared")
        spec = OutputSpec(name=name, value=value, description=description)
        self._outputs[name] = spec
        return spec

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def outputs(self) -> List[OutputSpec]:
        return list(self._outputs.values())

    def node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise TopologyError(f"Referenced resource '{node_id}' not found.") from None

    def nodes_of_type(self, resource_type: str) -> List[Node]:
        return [n for n in self._nodes.values() if n.type == resource_type]

    def references(self, node: Node) -> Tuple[str, ...]:
        """Ids this node depends on: explicit depends_on first, then Refs."""
        seen: Dict[str, None] = {}
        for dep in node.depends_on:
            seen.setdefault(dep, None)
        for ref in iter_refs(node.args):
            seen.setdefault(ref.node_id, None)
        for dep in seen:
            if dep not in self._nodes:
                raise TopologyError(f"Resource '{node.id}' references undeclared resource '{dep}'")
            if dep == node.id:
                raise TopologyError(f"Resource '{node.id}' references itself")
        return tuple(seen)

    def dependents(self, node_id: str) -> List[str]:
        return [n.id for n in self._nodes.values() if node_id in self.references(n)]

    def evaluation_order(self) -> List[Node]:
        """Topological order of the graph; ties keep declaration order."""
        position = {node_id: i for i, node_id in enumerate(self._nodes)}
        remaining = {n.id: set(self.references(n)) for n in self._nodes.values()}
        ready = [position[nid] for nid, deps in remaining.items() if not deps]
        heapq.heapify(ready)
        ids = list(self._nodes)
        order: List[Node] = []
        while ready:
            node_id = ids[heapq.heappop(ready)]
            order.append(self._nodes[node_id])
            del remaining[node_id]
            for other, deps in remaining.items():
                if node_id in deps:
                    deps.discard(node_id)
                    if not deps:
                        heapq.heappush(ready, position[other])
        if remaining:
            raise TopologyError(f"Dependency cycle between: {', '.join(sorted(remaining))}")

        for spec in self._outputs.values():
            for ref in iter_refs(spec.value):
                if ref.node_id not in self._nodes:
                    raise TopologyError(f"Output '{spec.name}' references undeclared resource '{ref.node_id}'")
        return order

    def to_dict(self) -> Dict[str, Any]:
        resources: Dict[str, Any] = {}
        for node in self.evaluation_order():
            entry: Dict[str, Any] = {"type": node.type}
            if node.lookup:
                entry["lookup"] = True
            entry["properties"] = to_plain(node.args)
            if node.depends_on:
                entry["depends_on"] = list(node.depends_on)
            resources[node.id] = entry
        return {
            "name": self.name,
            "region": self.region,
            "tags": dict(self.tags),
            "resources": resources,
            "outputs": {
                spec.name: {"description": spec.description, "value": to_plain(spec.value)}
                for spec in self._outputs.values()
            },
        }

    def render_template(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)
