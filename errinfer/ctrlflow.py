# errinfer/ctrlflow.py
"""
Control-flow facts for one function of the analysed program.

This module computes the *structural* facts the error-handling inference
consumes: dominance, post-dominance, control dependence and the values a
block may return.  All of them are derived once per function and never
change during an analysis run.

Principal classes
-----------------
- DominatorTree              (Cooper-Harvey-Kennedy iterative algorithm)
- PostDominatorTree          (dominator tree of the reversed CFG)
- ControlDependenceGraph     (Ferrante-Ottenstein-Warren 1987)
- FunctionModel              the facade used by the inference engine

Graphs are keyed by block handle.  A virtual exit node with id
:data:`EXIT_ID` joins every block that leaves the function (``ret`` or
``unreachable``) so that post-dominance is well defined for functions with
several returns.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import (
    Deque,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)

from errinfer.errors import ProgramModelError
from errinfer.ir import (
    BasicBlock,
    Function,
    Instruction,
    JumpInst,
    PhiInst,
    ReturnInst,
    UnreachableInst,
    Value,
)

logger = logging.getLogger(__name__)

EXIT_ID = 0


# ===================================================================
#  Graph view
# ===================================================================

class _BlockGraph:
    """Successor/predecessor lists over integer node ids."""

    def __init__(self, entry: int, nodes: Iterable[int],
                 succs: Dict[int, List[int]]):
        self.entry = entry
        self.nodes: List[int] = list(nodes)
        self._succs: Dict[int, List[int]] = {n: list(succs.get(n, ()))
                                             for n in self.nodes}
        self._preds: Dict[int, List[int]] = {n: [] for n in self.nodes}
        for n in self.nodes:
            for s in self._succs[n]:
                self._preds.setdefault(s, []).append(n)

    def successors(self, node: int) -> List[int]:
        return self._succs.get(node, [])

    def predecessors(self, node: int) -> List[int]:
        return self._preds.get(node, [])

    def reversed(self, new_entry: int) -> "_BlockGraph":
        rsuccs = {n: list(self._preds.get(n, ())) for n in self.nodes}
        return _BlockGraph(new_entry, self.nodes, rsuccs)


# ===================================================================
#  1. Dominator Tree
# ===================================================================

class DominatorTree:
    """
    Dominator tree computed with the Cooper-Harvey-Kennedy iterative
    algorithm.

    Attributes after .compute():
        idom : Dict[node_id, node_id]  (immediate dominator)

    The entry node's immediate dominator is the entry itself.  Nodes not
    reachable from the entry have no entry in ``idom`` and are dominated
    by nothing but themselves.
    """

    def __init__(self, graph: _BlockGraph):
        self.graph = graph
        self.idom: Dict[int, int] = {}
        self.dom_tree_children: Dict[int, List[int]] = defaultdict(list)
        self._computed = False

    def compute(self) -> "DominatorTree":
        if self._computed:
            return self
        self._compute_idom()
        for nid, parent in self.idom.items():
            if parent != nid:
                self.dom_tree_children[parent].append(nid)
        self._computed = True
        return self

    def dominates(self, a_id: int, b_id: int) -> bool:
        """Return True if *a* dominates *b*.  A node dominates itself."""
        self.compute()
        if a_id == b_id:
            return True
        cur = b_id
        while cur in self.idom:
            parent = self.idom[cur]
            if parent == cur:
                return False
            if parent == a_id:
                return True
            cur = parent
        return False

    def _reverse_postorder(self) -> List[int]:
        finish: List[int] = []
        seen: Set[int] = {self.graph.entry}
        stack: List[Tuple[int, int]] = [(self.graph.entry, 0)]
        while stack:
            node, idx = stack[-1]
            succs = self.graph.successors(node)
            if idx < len(succs):
                stack[-1] = (node, idx + 1)
                child = succs[idx]
                if child not in seen:
                    seen.add(child)
                    stack.append((child, 0))
            else:
                stack.pop()
                finish.append(node)
        finish.reverse()
        return finish

    def _compute_idom(self) -> None:
        entry = self.graph.entry
        rpo = self._reverse_postorder()
        rpo_num = {nid: i for i, nid in enumerate(rpo)}
        idom: Dict[int, int] = {entry: entry}

        def _intersect(b1: int, b2: int) -> int:
            while b1 != b2:
                while rpo_num[b1] > rpo_num[b2]:
                    b1 = idom[b1]
                while rpo_num[b2] > rpo_num[b1]:
                    b2 = idom[b2]
            return b1

        changed = True
        while changed:
            changed = False
            for nid in rpo:
                if nid == entry:
                    continue
                preds = [p for p in self.graph.predecessors(nid) if p in idom]
                if not preds:
                    continue
                new_idom = preds[0]
                for p in preds[1:]:
                    new_idom = _intersect(p, new_idom)
                if idom.get(nid) != new_idom:
                    idom[nid] = new_idom
                    changed = True
        self.idom = idom


# ===================================================================
#  2. Post-Dominator Tree
# ===================================================================

class PostDominatorTree:
    """
    Post-dominator tree: the dominator tree of the reversed CFG, rooted at
    the virtual exit.
    """

    def __init__(self, graph: _BlockGraph, exit_id: int = EXIT_ID):
        self._dom = DominatorTree(graph.reversed(exit_id))
        self.ipdom: Dict[int, int] = {}
        self._computed = False

    def compute(self) -> "PostDominatorTree":
        if self._computed:
            return self
        self._dom.compute()
        self.ipdom = dict(self._dom.idom)
        self._computed = True
        return self


# ===================================================================
#  3. Control Dependence Graph
# ===================================================================

class ControlDependenceGraph:
    """
    Control-dependence graph (Ferrante, Ottenstein & Warren 1987).

    Node B is control-dependent on node A iff there is a path from A to B
    on which B post-dominates every node after A, and B does not
    post-dominate A.

    For every CFG edge ``A -> S`` we walk up the post-dominator chain from
    S until ``ipdom(A)`` is reached; each node on the walk is control
    dependent on A.
    """

    def __init__(self, graph: _BlockGraph,
                 pdom: Optional[PostDominatorTree] = None):
        self.graph = graph
        self.pdom = pdom or PostDominatorTree(graph)
        # cd_map[A] = nodes control-dependent on A
        self.cd_map: Dict[int, Set[int]] = defaultdict(set)
        # rev_cd_map[B] = nodes B is control-dependent on
        self.rev_cd_map: Dict[int, Set[int]] = defaultdict(set)
        self._computed = False

    def compute(self) -> "ControlDependenceGraph":
        if self._computed:
            return self
        self.pdom.compute()
        ipdom = self.pdom.ipdom
        for a_id in self.graph.nodes:
            stop = ipdom.get(a_id)
            for b_id in self.graph.successors(a_id):
                runner: Optional[int] = b_id
                visited: Set[int] = set()
                while runner is not None and runner != stop:
                    if runner in visited:
                        break
                    visited.add(runner)
                    self.cd_map[a_id].add(runner)
                    self.rev_cd_map[runner].add(a_id)
                    nxt = ipdom.get(runner)
                    if nxt == runner:
                        break
                    runner = nxt
        self._computed = True
        return self

    def dependences_of(self, node_id: int) -> Set[int]:
        """Nodes that are control-dependent on *node_id*."""
        self.compute()
        return set(self.cd_map.get(node_id, ()))

    def controllers_of(self, node_id: int) -> Set[int]:
        """Nodes that *node_id* is control-dependent on."""
        self.compute()
        return set(self.rev_cd_map.get(node_id, ()))


# ===================================================================
#  4. Function model
# ===================================================================

class FunctionModel:
    """
    Structural facts about one defined function.

    Construction validates the function and computes the dominator tree,
    the post-dominator tree and the control-dependence graph eagerly.

    Raises
    ------
    ProgramModelError
        If the function has no body, a block has no terminator, a
        terminator is not the last instruction of its block, or a branch
        targets a block of another function.
    """

    def __init__(self, function: Function):
        self.function = function
        self._validate()
        self.blocks: List[BasicBlock] = list(function.blocks)
        self._by_handle: Dict[int, BasicBlock] = {b.handle: b for b in self.blocks}

        succs: Dict[int, List[int]] = {}
        for bb in self.blocks:
            term = bb.terminator
            if isinstance(term, (ReturnInst, UnreachableInst)):
                succs[bb.handle] = [EXIT_ID]
            else:
                succs[bb.handle] = [s.handle for s in term.successors()]
        succs[EXIT_ID] = []
        nodes = [b.handle for b in self.blocks] + [EXIT_ID]
        self._graph = _BlockGraph(self.blocks[0].handle, nodes, succs)

        self.domtree = DominatorTree(self._graph).compute()
        self.postdomtree = PostDominatorTree(self._graph).compute()
        self.cdg = ControlDependenceGraph(self._graph, self.postdomtree).compute()

        self._returns_cache: Dict[int, List[Value]] = {}
        logger.debug("Built function model for %s (%d blocks)",
                     function.name, len(self.blocks))

    def _validate(self) -> None:
        f = self.function
        if not f.blocks:
            raise ProgramModelError(f"function {f.name!r} has no body", f)
        owned = {b.handle for b in f.blocks}
        for bb in f.blocks:
            if bb.terminator is None:
                raise ProgramModelError(
                    f"block {bb.name!r} in {f.name!r} has no terminator", bb)
            for inst in bb.instructions[:-1]:
                if inst.is_terminator:
                    raise ProgramModelError(
                        f"terminator in the middle of block {bb.name!r} "
                        f"in {f.name!r}", inst)
            for succ in bb.terminator.successors():
                if succ.handle not in owned:
                    raise ProgramModelError(
                        f"block {bb.name!r} in {f.name!r} branches to "
                        f"foreign block {succ.name!r}", succ)

    def __repr__(self) -> str:
        return f"FunctionModel({self.function.name})"

    # ---- structure ---------------------------------------------------

    def terminator(self, bb: BasicBlock) -> Instruction:
        return bb.terminator  # type: ignore[return-value]

    def successors(self, bb: BasicBlock) -> List[BasicBlock]:
        return [self._by_handle[s] for s in self._graph.successors(bb.handle)
                if s != EXIT_ID]

    def predecessors(self, bb: BasicBlock) -> List[BasicBlock]:
        return [self._by_handle[p] for p in self._graph.predecessors(bb.handle)]

    def single_predecessor(self, bb: BasicBlock) -> Optional[BasicBlock]:
        preds = self.predecessors(bb)
        return preds[0] if len(preds) == 1 else None

    def dominates(self, a: BasicBlock, b: BasicBlock) -> bool:
        return self.domtree.dominates(a.handle, b.handle)

    # ---- control dependence ------------------------------------------

    def direct_control_dependencies(self, inst: Instruction) -> List[Instruction]:
        """Terminators of the blocks *inst*'s block is directly control
        dependent on, ordered by handle."""
        bb = inst.block
        if bb is None:
            return []
        deps = [self._by_handle[c].terminator
                for c in self.cdg.controllers_of(bb.handle) if c != EXIT_ID]
        return sorted(deps, key=lambda i: i.handle)

    def control_dependencies(self, inst: Instruction) -> List[Instruction]:
        """Transitive closure of :meth:`direct_control_dependencies`."""
        bb = inst.block
        if bb is None:
            return []
        seen: Set[int] = set()
        work: Deque[int] = deque([bb.handle])
        while work:
            cur = work.popleft()
            for c in self.cdg.controllers_of(cur):
                if c != EXIT_ID and c not in seen:
                    seen.add(c)
                    work.append(c)
        deps = [self._by_handle[c].terminator for c in seen]
        return sorted(deps, key=lambda i: i.handle)

    # ---- returned values ---------------------------------------------

    @staticmethod
    def _through_edge(value: Value, succ: BasicBlock, pred: BasicBlock) -> Value:
        # A phi of the successor takes the value flowing in from pred.
        if isinstance(value, PhiInst) and value.block == succ:
            incoming = value.incoming_for(pred)
            if incoming is not None:
                return incoming
        return value

    @staticmethod
    def _is_forwarding(bb: BasicBlock) -> bool:
        return all(isinstance(i, PhiInst) for i in bb.instructions[:-1]) and \
            isinstance(bb.terminator, (JumpInst, ReturnInst))

    def block_return(self, bb: BasicBlock) -> Optional[Value]:
        """The single value returned once control reaches the end of *bb*.

        Follows unconditional jumps through blocks that contain nothing but
        phi nodes, resolving those phis along the way.  Returns ``None``
        when *bb* does not unconditionally return, or when the value is a
        phi of *bb* itself (its value depends on how *bb* was entered).
        """
        chain: List[BasicBlock] = [bb]
        seen = {bb.handle}
        cur = bb
        while isinstance(cur.terminator, JumpInst):
            nxt = cur.terminator.target
            if nxt.handle in seen or not self._is_forwarding(nxt):
                return None
            seen.add(nxt.handle)
            chain.append(nxt)
            cur = nxt
        term = cur.terminator
        if not isinstance(term, ReturnInst) or term.value is None:
            return None
        value = term.value
        for i in range(len(chain) - 1, 0, -1):
            value = self._through_edge(value, chain[i], chain[i - 1])
        if isinstance(value, PhiInst) and value.block == bb:
            return None
        return value

    def block_returns(self, bb: BasicBlock) -> List[Value]:
        """Every value that may be returned on some path starting at *bb*.

        Phis are resolved edge by edge; a phi of *bb* itself is kept
        unresolved.  Paths that re-enter a block already on the current
        path contribute nothing.
        """
        cached = self._returns_cache.get(bb.handle)
        if cached is not None:
            return list(cached)
        result = self._collect_returns(bb)
        self._returns_cache[bb.handle] = result
        return list(result)

    def _collect_returns(self, root: BasicBlock) -> List[Value]:
        memo: Dict[int, List[Value]] = {}
        on_stack: Set[int] = set()
        # (block, successor index, accumulated values)
        stack: List[Tuple[BasicBlock, int, List[Value]]] = [(root, 0, [])]
        on_stack.add(root.handle)
        while True:
            bb, idx, acc = stack[-1]
            term = bb.terminator
            if isinstance(term, ReturnInst):
                vals = [term.value] if term.value is not None else []
            else:
                succs = term.successors()
                done = idx >= len(succs)
                if not done:
                    stack[-1] = (bb, idx + 1, acc)
                    succ = succs[idx]
                    if succ.handle in memo:
                        _extend_unique(acc, (self._through_edge(v, succ, bb)
                                             for v in memo[succ.handle]))
                    elif succ.handle not in on_stack:
                        on_stack.add(succ.handle)
                        stack.append((succ, 0, []))
                    continue
                vals = acc
            stack.pop()
            on_stack.discard(bb.handle)
            memo[bb.handle] = vals
            if not stack:
                return list(vals)
            parent, _, parent_acc = stack[-1]
            _extend_unique(parent_acc,
                           (self._through_edge(v, bb, parent) for v in vals))


def _extend_unique(acc: List[Value], values: Iterable[Value]) -> None:
    for v in values:
        if v not in acc:
            acc.append(v)
