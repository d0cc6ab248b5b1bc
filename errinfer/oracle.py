"""
errinfer/oracle.py
══════════════════

Satisfiability oracle for path-condition formulas.

The engine asks one kind of question: *is there a signed 32-bit value of
the tracked call's result for which this formula holds?*  The answer is
three-valued.  ``UNKNOWN`` (a solver timeout or give-up) is reported as
``None`` by :meth:`SatOracle.is_satisfiable`; callers treat it as
"abstain" and never as a definite answer.

Classes
-------
    SolverResult   SAT / UNSAT / UNKNOWN
    SatOracle      abstract oracle interface
    Z3Context      translation of :mod:`errinfer.formula` nodes to z3 terms
    Z3Oracle       z3-solver bit-vector backend
    CachingOracle  per-run memo in front of another oracle

Usage::

    oracle = CachingOracle(Z3Oracle(timeout_ms=500))
    oracle.is_satisfiable(conjoin(any_of([-1, -2]), Relation(RelOp.GE, X, IntConst(0))))
    # -> False
"""

from __future__ import annotations

import enum
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import z3

from errinfer.errors import OracleError
from errinfer.formula import Formula, RelOp

logger = logging.getLogger(__name__)

BIT_WIDTH = 32


class SolverResult(enum.Enum):
    SAT = "sat"
    UNSAT = "unsat"
    UNKNOWN = "unknown"


class SatOracle(ABC):
    """Abstract satisfiability oracle over one free 32-bit signed integer."""

    @abstractmethod
    def check(self, formula: Formula) -> SolverResult:
        ...

    def is_satisfiable(self, formula: Formula) -> Optional[bool]:
        """``True``/``False`` for a definite answer, ``None`` otherwise."""
        result = self.check(formula)
        if result is SolverResult.SAT:
            return True
        if result is SolverResult.UNSAT:
            return False
        return None


class Z3Context:
    """Builds z3 terms for formula nodes.  Integers are 32-bit bit-vectors
    and every ordering comparison is signed."""

    def __init__(self, bits: int = BIT_WIDTH):
        self.bits = bits
        self._vars: Dict[str, Any] = {}

    def mk_bool(self, value: bool):
        return z3.BoolVal(value)

    def mk_var(self, name: str):
        if name not in self._vars:
            self._vars[name] = z3.BitVec(name, self.bits)
        return self._vars[name]

    def mk_const(self, value: int):
        return z3.BitVecVal(int(value), self.bits)

    def mk_rel(self, op: RelOp, lhs, rhs):
        # z3's < <= > >= on bit-vectors are the signed comparisons
        if op is RelOp.EQ:
            return lhs == rhs
        if op is RelOp.NE:
            return lhs != rhs
        if op is RelOp.LT:
            return lhs < rhs
        if op is RelOp.LE:
            return lhs <= rhs
        if op is RelOp.GT:
            return lhs > rhs
        if op is RelOp.GE:
            return lhs >= rhs
        raise OracleError(f"unsupported relation {op!r}")

    def mk_and(self, a, b):
        return z3.And(a, b)

    def mk_or(self, a, b):
        return z3.Or(a, b)

    def mk_not(self, a):
        return z3.Not(a)


class Z3Oracle(SatOracle):
    """Oracle backed by z3.

    Parameters
    ----------
    timeout_ms : int, optional
        Per-query solver timeout.  ``None`` lets a query run to completion.
    """

    def __init__(self, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms
        self._ctx = Z3Context()

    def check(self, formula: Formula) -> SolverResult:
        try:
            term = formula.to_smt(self._ctx)
        except AttributeError as exc:
            raise OracleError(f"cannot translate formula {formula!r}") from exc
        solver = z3.Solver()
        if self.timeout_ms is not None:
            solver.set("timeout", int(self.timeout_ms))
        solver.add(term)
        t0 = time.monotonic()
        result = solver.check()
        elapsed = time.monotonic() - t0
        if result == z3.sat:
            outcome = SolverResult.SAT
        elif result == z3.unsat:
            outcome = SolverResult.UNSAT
        else:
            outcome = SolverResult.UNKNOWN
            logger.info("Solver gave up on %s (%s)", formula.pretty(),
                        solver.reason_unknown())
        logger.debug("%s -> %s in %.4fs", formula.pretty(), outcome.value, elapsed)
        return outcome


class CachingOracle(SatOracle):
    """Memoises another oracle's answers for the lifetime of one run.

    Formulas are frozen dataclasses, so structurally identical queries hit
    the cache.
    """

    def __init__(self, inner: SatOracle):
        self.inner = inner
        self._cache: Dict[Formula, SolverResult] = {}
        self.queries = 0
        self.hits = 0

    def check(self, formula: Formula) -> SolverResult:
        self.queries += 1
        cached = self._cache.get(formula)
        if cached is not None:
            self.hits += 1
            return cached
        result = self.inner.check(formula)
        self._cache[formula] = result
        return result

    def clear(self) -> None:
        self._cache.clear()

    def statistics(self) -> Dict[str, int]:
        return {"queries": self.queries, "hits": self.hits,
                "cached": len(self._cache)}
