"""
errinfer/formula.py
═══════════════════

Path-condition formulas over one free signed 32-bit integer.

The inference engine reasons about a single unknown at a time: the result
of one call instruction.  Formulas are small immutable expression trees
(frozen dataclasses), so structurally equal conditions compare and hash
equal and can be memoised across queries of the same run.

Node types
----------
    Symbol       the free variable (``x``)
    IntConst     a 32-bit integer literal
    Relation     ``lhs <op> rhs`` with a signed :class:`RelOp`
    Conjunction  ``lhs ∧ rhs``
    Disjunction  ``lhs ∨ rhs``
    Negation     ``¬ operand``
    BoolConst    ``true`` / ``false``

Helpers
-------
    conjoin(*fs), disjoin(*fs)  fold with identities, as the solver expects
    any_of(codes)               ``x == c1 ∨ x == c2 ∨ ...``
    lifted_conjoin(a, b)        conjunction of two possibly absent formulas
    evaluate(formula, x)        concrete evaluation of a formula at *x*
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Optional

_MASK32 = (1 << 32) - 1


def to_int32(value: int) -> int:
    """Wrap *value* into the signed 32-bit range."""
    value &= _MASK32
    return value - (1 << 32) if value >= (1 << 31) else value


# -------------------------------------------------------------------
# Relations
# -------------------------------------------------------------------

class RelOp(enum.Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    def holds(self, a: int, b: int) -> bool:
        if self is RelOp.EQ:
            return a == b
        if self is RelOp.NE:
            return a != b
        if self is RelOp.LT:
            return a < b
        if self is RelOp.LE:
            return a <= b
        if self is RelOp.GT:
            return a > b
        return a >= b


# -------------------------------------------------------------------
# Formula tree
# -------------------------------------------------------------------

class Formula(ABC):
    """Base class of every node of the formula language."""

    @abstractmethod
    def to_smt(self, ctx: Any) -> Any:
        """Translate to a term of the SMT context *ctx*."""

    @abstractmethod
    def pretty(self) -> str:
        ...

    @abstractmethod
    def _eval(self, x: int) -> Any:
        ...

    def __str__(self) -> str:
        return self.pretty()


@dataclass(frozen=True)
class BoolConst(Formula):
    value: bool

    def to_smt(self, ctx):
        return ctx.mk_bool(self.value)

    def pretty(self):
        return "true" if self.value else "false"

    def _eval(self, x):
        return self.value


@dataclass(frozen=True)
class Symbol(Formula):
    """The free variable standing for the tracked instruction's result."""
    name: str = "x"

    def to_smt(self, ctx):
        return ctx.mk_var(self.name)

    def pretty(self):
        return self.name

    def _eval(self, x):
        return x


@dataclass(frozen=True)
class IntConst(Formula):
    value: int

    def to_smt(self, ctx):
        return ctx.mk_const(self.value)

    def pretty(self):
        return str(self.value)

    def _eval(self, x):
        return to_int32(self.value)


@dataclass(frozen=True)
class Relation(Formula):
    """A signed comparison  ``lhs <op> rhs``."""
    op: RelOp
    lhs: Formula
    rhs: Formula

    def to_smt(self, ctx):
        return ctx.mk_rel(self.op, self.lhs.to_smt(ctx), self.rhs.to_smt(ctx))

    def pretty(self):
        return f"({self.lhs.pretty()} {self.op.value} {self.rhs.pretty()})"

    def _eval(self, x):
        return self.op.holds(self.lhs._eval(x), self.rhs._eval(x))


@dataclass(frozen=True)
class Conjunction(Formula):
    lhs: Formula
    rhs: Formula

    def to_smt(self, ctx):
        return ctx.mk_and(self.lhs.to_smt(ctx), self.rhs.to_smt(ctx))

    def pretty(self):
        return f"({self.lhs.pretty()} ∧ {self.rhs.pretty()})"

    def _eval(self, x):
        return self.lhs._eval(x) and self.rhs._eval(x)


@dataclass(frozen=True)
class Disjunction(Formula):
    lhs: Formula
    rhs: Formula

    def to_smt(self, ctx):
        return ctx.mk_or(self.lhs.to_smt(ctx), self.rhs.to_smt(ctx))

    def pretty(self):
        return f"({self.lhs.pretty()} ∨ {self.rhs.pretty()})"

    def _eval(self, x):
        return self.lhs._eval(x) or self.rhs._eval(x)


@dataclass(frozen=True)
class Negation(Formula):
    operand: Formula

    def to_smt(self, ctx):
        return ctx.mk_not(self.operand.to_smt(ctx))

    def pretty(self):
        return f"¬{self.operand.pretty()}"

    def _eval(self, x):
        return not self.operand._eval(x)


X = Symbol()
TRUE = BoolConst(True)
FALSE = BoolConst(False)


# -------------------------------------------------------------------
# Utilities
# -------------------------------------------------------------------

def conjoin(*formulas: Formula) -> Formula:
    """Fold *formulas* into a conjunction, with identity ``true``."""
    result: Formula = TRUE
    for f in formulas:
        if f == FALSE:
            return FALSE
        if f == TRUE:
            continue
        result = f if result == TRUE else Conjunction(result, f)
    return result


def disjoin(*formulas: Formula) -> Formula:
    """Fold *formulas* into a disjunction, with identity ``false``."""
    result: Formula = FALSE
    for f in formulas:
        if f == TRUE:
            return TRUE
        if f == FALSE:
            continue
        result = f if result == FALSE else Disjunction(result, f)
    return result


def any_of(codes: Iterable[int], var: Formula = X) -> Formula:
    """``var`` equals one of *codes*; the codes are taken in sorted order."""
    return disjoin(*(Relation(RelOp.EQ, var, IntConst(c))
                     for c in sorted(set(codes))))


def lifted_conjoin(a: Optional[Formula], b: Optional[Formula]) -> Optional[Formula]:
    """Conjunction where an absent operand means "no information"."""
    if a is None:
        return b
    if b is None:
        return a
    return conjoin(a, b)


def evaluate(formula: Formula, x: int) -> bool:
    """Evaluate *formula* with the free variable bound to *x* (wrapped to
    32 bits)."""
    return bool(formula._eval(to_int32(x)))
