# tests/conftest.py
"""
Shared fixtures and IR builders for the errinfer test-suite.

Most tests build tiny functions with :class:`errinfer.ir.IRBuilder`.  The
helpers below produce the recurring shapes (a checked call with an error
branch, a plain forwarding wrapper) and return a namespace holding the
interesting blocks and instructions so tests can assert on them.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Iterable, Optional, Sequence

import pytest

from errinfer.annotations import (
    FunctionCall,
    IntegerCodes,
    PointerCodes,
    ReportsErrors,
)
from errinfer.config import default_error_analysis_options
from errinfer.context import AnalysisContext
from errinfer.ctrlflow import FunctionModel
from errinfer.ir import (
    INT32,
    CmpPredicate,
    IRBuilder,
    Module,
    Value,
)
from errinfer.oracle import CachingOracle, SatOracle, SolverResult, Z3Oracle
from errinfer.summaries import DependencySummary, IndirectCallSummary


# ── Summary store helpers ───────────────────────────────────────

def reports(*codes: int, actions: Iterable[str] = (),
            pointer: bool = False) -> ReportsErrors:
    kind = PointerCodes if pointer else IntegerCodes
    return ReportsErrors(frozenset(FunctionCall(a) for a in actions),
                         kind(frozenset(codes)))


def deps_with(**codes_by_name: Sequence[int]) -> DependencySummary:
    """``deps_with(read_block=[-1])`` -> a store knowing read_block."""
    return DependencySummary({name: [reports(*codes)]
                              for name, codes in codes_by_name.items()})


# ── Oracles and contexts ────────────────────────────────────────

class ScriptedOracle(SatOracle):
    """Answers every query with the same result and records the queries."""

    def __init__(self, result: SolverResult = SolverResult.UNKNOWN):
        self.result = result
        self.queries = []

    def check(self, formula):
        self.queries.append(formula)
        return self.result


def make_context(dependency_summary: Optional[DependencySummary] = None,
                 indirect_calls: Optional[IndirectCallSummary] = None,
                 oracle: Optional[SatOracle] = None,
                 options=None) -> AnalysisContext:
    return AnalysisContext(
        dependency_summary or DependencySummary(),
        indirect_calls or IndirectCallSummary(),
        oracle or CachingOracle(Z3Oracle()),
        options or default_error_analysis_options(),
    )


# ── IR shapes ───────────────────────────────────────────────────

def build_checked_call(
    m: Module,
    name: str,
    callee: Value,
    code: int,
    *,
    err_code: int = -1,
    ok_code: int = 0,
    predicate: CmpPredicate = CmpPredicate.EQ,
    err_calls: Sequence[Value] = (),
    params=(),
) -> SimpleNamespace:
    """::

        rc = callee();
        if (rc <predicate> code) { err_calls...; return err_code; }
        return ok_code;
    """
    f = m.add_function(name, INT32, params=params)
    b = IRBuilder(f)
    entry, err, ok = b.blocks("entry", "err", "ok")
    b.position_at_end(entry)
    rc = b.call(callee, name="rc")
    cmp = b.icmp(predicate, rc, code)
    br = b.br(cmp, err, ok)
    b.position_at_end(err)
    calls = [b.call(c) for c in err_calls]
    b.ret(err_code)
    b.position_at_end(ok)
    b.ret(ok_code)
    return SimpleNamespace(function=f, entry=entry, err=err, ok=ok, rc=rc,
                           cmp=cmp, br=br, calls=calls)


def build_forwarder(m: Module, name: str, callee: Value) -> SimpleNamespace:
    """``return callee();``"""
    f = m.add_function(name, INT32)
    b = IRBuilder(f)
    (entry,) = b.blocks("entry")
    b.position_at_end(entry)
    rc = b.call(callee, name="rc")
    b.ret(rc)
    return SimpleNamespace(function=f, entry=entry, rc=rc)


def build_transitive_filter(m: Module, callee: Value) -> SimpleNamespace:
    """::

        rc = callee();
        if (rc == -1) return -99;
        return rc;
    """
    f = m.add_function("caller", INT32)
    b = IRBuilder(f)
    entry, fix, fwd = b.blocks("entry", "fix", "pass")
    b.position_at_end(entry)
    rc = b.call(callee, name="rc")
    br = b.br(b.icmp(CmpPredicate.EQ, rc, -1), fix, fwd)
    b.position_at_end(fix)
    b.ret(-99)
    b.position_at_end(fwd)
    b.ret(rc)
    return SimpleNamespace(function=f, entry=entry, fix=fix, fwd=fwd, rc=rc,
                           br=br)


def codes_of(summary, function):
    """All codes of *function*'s descriptors, as a set."""
    found = set()
    for d in summary.descriptors.get(function, ()):
        found |= d.returns.codes
    return found


# ── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def module():
    return Module("test")


@pytest.fixture
def checked(module):
    """``load``: checks ``read_block() == -1``, reports with log_error(7)."""
    read = module.declare_external("read_block")
    log = module.declare_external("log_error")
    f = module.add_function("load", INT32)
    b = IRBuilder(f)
    entry, err, ok = b.blocks("entry", "err", "ok")
    b.position_at_end(entry)
    rc = b.call(read, name="rc")
    cmp = b.icmp(CmpPredicate.EQ, rc, -1)
    br = b.br(cmp, err, ok)
    b.position_at_end(err)
    log_call = b.call(log, 7)
    b.ret(-5)
    b.position_at_end(ok)
    b.ret(0)
    return SimpleNamespace(module=module, function=f, model=FunctionModel(f),
                           entry=entry, err=err, ok=ok, rc=rc, cmp=cmp, br=br,
                           log_call=log_call, deps=deps_with(read_block=[-1]))
