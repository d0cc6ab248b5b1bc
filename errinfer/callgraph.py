"""
errinfer.callgraph
==================

Call graph over the *defined* functions handed to the analysis.

- **Nodes** are :class:`~errinfer.ir.Function` objects.
- **Edges** are call sites, either direct or resolved through the
  :class:`~errinfer.summaries.IndirectCallSummary`.

Calls to external functions are not represented: their facts come from the
dependency summary and never change during a run.

The error-handling engine uses :meth:`CallGraph.bottom_up_order` so that a
callee's freshly learned descriptors are visible to its callers within the
same fixpoint iteration.

Public API
----------
    CallResolutionKind  - how an edge was resolved
    CallGraphNode       - a node in the call graph
    CallGraphEdge       - a directed edge (call site)
    CallGraph           - the whole-program call graph
    build_callgraph     - build from a list of functions
"""

from __future__ import annotations

import enum
from collections import OrderedDict
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
    Set,
)

from errinfer.ir import CallInst, Function, called_function
from errinfer.summaries import IndirectCallSummary, call_targets


# ---------------------------------------------------------------------------
# Resolution kinds
# ---------------------------------------------------------------------------

class CallResolutionKind(enum.Enum):
    """How a call edge was resolved."""

    DIRECT   = "direct"
    INDIRECT = "indirect"


# ---------------------------------------------------------------------------
# Nodes and edges
# ---------------------------------------------------------------------------

class CallGraphNode:
    """A defined function in the call graph.

    Attributes
    ----------
    function : Function
    out_edges : list[CallGraphEdge]
        Outgoing call edges (this function calls ...).
    """

    __slots__ = ("function", "out_edges")

    def __init__(self, function: Function) -> None:
        self.function = function
        self.out_edges: List[CallGraphEdge] = []

    @property
    def name(self) -> str:
        return self.function.name

    def __repr__(self) -> str:
        return f"CallGraphNode({self.name!r})"

    def __hash__(self) -> int:
        return self.function.handle

    def __eq__(self, other) -> bool:
        if isinstance(other, CallGraphNode):
            return self.function == other.function
        return NotImplemented


class CallGraphEdge:
    """A call site from *caller* to *callee*."""

    __slots__ = ("caller", "callee", "call", "resolution")

    def __init__(
        self,
        caller: CallGraphNode,
        callee: CallGraphNode,
        call: CallInst,
        resolution: CallResolutionKind = CallResolutionKind.DIRECT,
    ) -> None:
        self.caller = caller
        self.callee = callee
        self.call = call
        self.resolution = resolution

    def __repr__(self) -> str:
        return (f"CallGraphEdge({self.caller.name} -> {self.callee.name}, "
                f"{self.resolution.value})")


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """Whole-program call graph.

    Attributes
    ----------
    nodes : OrderedDict[int, CallGraphNode]
        All nodes, keyed by function handle, in insertion order.
    edges : list[CallGraphEdge]
    """

    def __init__(self) -> None:
        self.nodes: "OrderedDict[int, CallGraphNode]" = OrderedDict()
        self.edges: List[CallGraphEdge] = []

    def get_or_create_node(self, function: Function) -> CallGraphNode:
        node = self.nodes.get(function.handle)
        if node is None:
            node = CallGraphNode(function)
            self.nodes[function.handle] = node
        return node

    def node_for_function(self, function: Function) -> Optional[CallGraphNode]:
        return self.nodes.get(function.handle)

    def add_edge(
        self,
        caller: CallGraphNode,
        callee: CallGraphNode,
        call: CallInst,
        resolution: CallResolutionKind = CallResolutionKind.DIRECT,
    ) -> CallGraphEdge:
        edge = CallGraphEdge(caller, callee, call, resolution)
        self.edges.append(edge)
        caller.out_edges.append(edge)
        return edge

    def strongly_connected_components(self) -> List[List[CallGraphNode]]:
        """Compute SCCs using Tarjan's algorithm.

        SCCs come out in reverse topological order (callees before
        callers).  Iterative, so call chains deeper than the interpreter's
        recursion limit are fine.
        """
        counter = 0
        stack: List[CallGraphNode] = []
        lowlink: Dict[int, int] = {}
        index: Dict[int, int] = {}
        on_stack: Set[int] = set()
        result: List[List[CallGraphNode]] = []

        def visit(v: CallGraphNode) -> None:
            nonlocal counter
            vid = v.function.handle
            index[vid] = lowlink[vid] = counter
            counter += 1
            stack.append(v)
            on_stack.add(vid)

        for root in self.nodes.values():
            if root.function.handle in index:
                continue
            visit(root)
            # (node, iterator over its remaining out-edges)
            work = [(root, iter(root.out_edges))]
            while work:
                v, edges = work[-1]
                vid = v.function.handle
                descended = False
                for e in edges:
                    w = e.callee
                    wid = w.function.handle
                    if wid not in index:
                        visit(w)
                        work.append((w, iter(w.out_edges)))
                        descended = True
                        break
                    if wid in on_stack:
                        lowlink[vid] = min(lowlink[vid], index[wid])
                if descended:
                    continue

                work.pop()
                if work:
                    pid = work[-1][0].function.handle
                    lowlink[pid] = min(lowlink[pid], lowlink[vid])
                if lowlink[vid] == index[vid]:
                    scc: List[CallGraphNode] = []
                    while True:
                        w = stack.pop()
                        on_stack.discard(w.function.handle)
                        scc.append(w)
                        if w is v:
                            break
                    result.append(scc)
        return result

    def bottom_up_order(self) -> List[Function]:
        """Functions ordered callees first; members of one SCC keep their
        insertion order."""
        position = {h: i for i, h in enumerate(self.nodes)}
        order: List[Function] = []
        for scc in self.strongly_connected_components():
            members = sorted(scc, key=lambda n: position[n.function.handle])
            order.extend(n.function for n in members)
        return order

    def __repr__(self) -> str:
        return f"CallGraph(nodes={len(self.nodes)}, edges={len(self.edges)})"


def build_callgraph(
    functions: Iterable[Function],
    indirect_calls: Optional[IndirectCallSummary] = None,
) -> CallGraph:
    """Build the call graph of *functions*.

    Only calls whose (possibly indirect) targets are among *functions*
    produce edges.
    """
    ics = indirect_calls or IndirectCallSummary()
    cg = CallGraph()
    funcs = list(functions)
    for f in funcs:
        cg.get_or_create_node(f)
    for f in funcs:
        caller = cg.nodes[f.handle]
        for inst in f.instructions():
            if not isinstance(inst, CallInst):
                continue
            targets = call_targets(ics, inst.callee)
            kind = (CallResolutionKind.DIRECT if called_function(inst) is not None
                    else CallResolutionKind.INDIRECT)
            for t in targets:
                callee = cg.node_for_function(t) if isinstance(t, Function) else None
                if callee is not None:
                    cg.add_edge(caller, callee, inst, kind)
    return cg
