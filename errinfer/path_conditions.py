"""
errinfer/path_conditions.py
═══════════════════════════

Path conditions relative to one instruction's result.

Given a block *bb* and a target instruction *t* (a call), build the
formula over ``x`` (the value of *t*) that must hold for control to reach
*bb*:

* each direct control dependency of *bb* is a conditional branch; when its
  comparison involves *t* (looking through casts) and a constant, it
  contributes the signed relation of the comparison, negated unless *bb*
  lies on the true edge (the true target dominates *bb*);
* facts contributed along one dependency are conjoined with the facts of
  the dependency's own block, recursively;
* several direct dependencies combine by disjunction, since any of them
  may have led to *bb*;
* a dependency that says nothing about *t* contributes no constraint but
  the walk continues through it.

The result is ``None`` when nothing constrains *t*.

Two memo tables bound the work: results per (function, block, target)
live in :attr:`ErrorSummary.formula_cache` for the whole run, and
results per (block, dependency) are shared within one computation.  A
visited set over dependencies cuts cycles of irreducible control flow; a
revisited dependency contributes nothing.

The walk is driven by an explicit stack of generators instead of Python
recursion, so deep dependence chains cannot exhaust the interpreter stack.
"""

from __future__ import annotations

import logging
from typing import Dict, Generator, List, Optional, Set, Tuple

from errinfer.annotations import ErrorSummary
from errinfer.formula import (
    IntConst,
    Formula,
    Negation,
    Relation,
    RelOp,
    X,
    disjoin,
    lifted_conjoin,
)
from errinfer.ir import (
    BasicBlock,
    BranchInst,
    CmpPredicate,
    ConstantInt,
    ConstantPointerNull,
    ICmpInst,
    Instruction,
    Value,
    ignore_casts,
)

logger = logging.getLogger(__name__)

# Unsigned predicates are deliberately read as their signed counterparts:
# error codes are small negative numbers compared as C ints.
_PREDICATE_RELATIONS: Dict[CmpPredicate, RelOp] = {
    CmpPredicate.EQ: RelOp.EQ,
    CmpPredicate.NE: RelOp.NE,
    CmpPredicate.UGT: RelOp.GT,
    CmpPredicate.UGE: RelOp.GE,
    CmpPredicate.ULT: RelOp.LT,
    CmpPredicate.ULE: RelOp.LE,
    CmpPredicate.SGT: RelOp.GT,
    CmpPredicate.SGE: RelOp.GE,
    CmpPredicate.SLT: RelOp.LT,
    CmpPredicate.SLE: RelOp.LE,
}

_Step = Generator["_Step", Optional[Formula], Optional[Formula]]


def _constant_operand(value: Value) -> Optional[int]:
    v = ignore_casts(value)
    if isinstance(v, ConstantInt):
        return v.value
    if isinstance(v, ConstantPointerNull):
        return 0
    return None


def induced_fact(lhs: Value, rhs: Value, predicate: CmpPredicate,
                 positive: bool) -> Optional[Formula]:
    """The relation ``lhs <predicate> rhs`` with the non-constant side
    replaced by ``x``; ``None`` when neither side is a constant."""
    op = _PREDICATE_RELATIONS.get(predicate)
    if op is None:
        return None
    c = _constant_operand(lhs)
    if c is not None:
        fact: Formula = Relation(op, IntConst(c), X)
    else:
        c = _constant_operand(rhs)
        if c is None:
            return None
        fact = Relation(op, X, IntConst(c))
    return fact if positive else Negation(fact)


def _trampoline(step: _Step) -> Optional[Formula]:
    stack: List[_Step] = [step]
    value: Optional[Formula] = None
    while stack:
        try:
            child = stack[-1].send(value)
        except StopIteration as stop:
            stack.pop()
            value = stop.value
        else:
            stack.append(child)
            value = None
    return value


class PathConditionBuilder:
    """Builds the path condition of blocks of one function with respect to
    one target instruction.  Single use: the memo and visited set belong to
    a single computation."""

    def __init__(self, model, target: Instruction):
        self.model = model
        self.target = target
        self._visited: Set[int] = set()
        self._memo: Dict[Tuple[int, int], Optional[Formula]] = {}

    def build(self, bb: BasicBlock) -> Optional[Formula]:
        if not self.model.control_dependencies(self.model.terminator(bb)):
            return None
        return _trampoline(self._relevant_facts(bb))

    def _involves_target(self, cmp: ICmpInst) -> bool:
        return ignore_casts(cmp.lhs) == self.target or \
            ignore_casts(cmp.rhs) == self.target

    def _relevant_facts(self, bb: BasicBlock) -> _Step:
        deps = self.model.direct_control_dependencies(self.model.terminator(bb))
        if not deps:
            return None
        if len(deps) == 1:
            return (yield self._memo_fact(bb, deps[0]))
        facts = []
        for dep in deps:
            f = yield self._memo_fact(bb, dep)
            if f is not None:
                facts.append(f)
        return disjoin(*facts) if facts else None

    def _memo_fact(self, bb: BasicBlock, dep: Instruction) -> _Step:
        key = (bb.handle, dep.handle)
        if key in self._memo:
            return self._memo[key]
        if dep.handle in self._visited:
            return None
        self._visited.add(dep.handle)
        return (yield self._fact(bb, dep))

    def _fact(self, bb: BasicBlock, dep: Instruction) -> _Step:
        dep_block = dep.block
        cond = dep.condition if isinstance(dep, BranchInst) else None
        if isinstance(cond, ICmpInst) and self._involves_target(cond):
            positive = self.model.dominates(dep.true_target, bb)
            this = induced_fact(cond.lhs, cond.rhs, cond.predicate, positive)
            inner = yield self._relevant_facts(dep_block)
            fact = lifted_conjoin(this, inner)
            self._memo[(bb.handle, dep.handle)] = fact
            return fact
        return (yield self._relevant_facts(dep_block))


def relevant_facts(summary: ErrorSummary, model, bb: BasicBlock,
                   target: Instruction) -> Optional[Formula]:
    """Cached path condition of *bb* over the result of *target*."""
    key = (model.function.handle, bb.handle, target.handle)
    cache = summary.formula_cache
    if key in cache:
        return cache[key]
    formula = PathConditionBuilder(model, target).build(bb)
    cache[key] = formula
    if formula is not None:
        logger.debug("path condition %s:%s wrt %%%d: %s", model.function.name,
                     bb.name, target.handle, formula.pretty())
    return formula
