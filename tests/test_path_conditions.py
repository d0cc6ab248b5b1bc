# tests/test_path_conditions.py
"""Path conditions over the result of one call."""

from errinfer.annotations import ErrorSummary
from errinfer.ctrlflow import FunctionModel
from errinfer.formula import (
    IntConst,
    Negation,
    Relation,
    RelOp,
    X,
    evaluate,
)
from errinfer.ir import INT32, PTR, CastKind, CmpPredicate, IRBuilder
from errinfer.path_conditions import (
    PathConditionBuilder,
    induced_fact,
    relevant_facts,
)
from tests.conftest import build_checked_call


def eq(c):
    return Relation(RelOp.EQ, X, IntConst(c))


class TestInducedFact:

    def test_constant_on_the_right(self, module):
        rc = module.declare_external("g")
        c = module.const_int(-1)
        assert induced_fact(rc, c, CmpPredicate.EQ, True) == eq(-1)
        assert induced_fact(rc, c, CmpPredicate.EQ, False) == Negation(eq(-1))

    def test_constant_on_the_left_keeps_operand_order(self, module):
        rc = module.declare_external("g")
        fact = induced_fact(module.const_int(0), rc, CmpPredicate.SLT, True)
        assert fact == Relation(RelOp.LT, IntConst(0), X)

    def test_unsigned_predicates_read_as_signed(self, module):
        rc = module.declare_external("g")
        c = module.const_int(0)
        assert induced_fact(rc, c, CmpPredicate.ULT, True) == \
            Relation(RelOp.LT, X, IntConst(0))
        assert induced_fact(rc, c, CmpPredicate.UGE, True) == \
            Relation(RelOp.GE, X, IntConst(0))

    def test_null_is_zero(self, module):
        p = module.declare_external("open_thing", PTR)
        assert induced_fact(p, module.null(), CmpPredicate.EQ, True) == eq(0)

    def test_no_constant_no_fact(self, module):
        a = module.declare_external("a")
        b = module.declare_external("b")
        assert induced_fact(a, b, CmpPredicate.EQ, True) is None


class TestRelevantFacts:

    def test_true_and_false_edges(self, checked):
        summary = ErrorSummary()
        on_err = relevant_facts(summary, checked.model, checked.err, checked.rc)
        on_ok = relevant_facts(summary, checked.model, checked.ok, checked.rc)
        assert on_err == eq(-1)
        assert on_ok == Negation(eq(-1))

    def test_no_dependencies_no_formula(self, checked):
        summary = ErrorSummary()
        assert relevant_facts(summary, checked.model, checked.entry,
                              checked.rc) is None

    def test_results_are_cached_per_run(self, checked):
        summary = ErrorSummary()
        first = relevant_facts(summary, checked.model, checked.err, checked.rc)
        key = (checked.function.handle, checked.err.handle, checked.rc.handle)
        assert summary.formula_cache[key] == first
        assert summary.copy().formula_cache is summary.formula_cache

    def test_nested_checks_conjoin(self, module):
        c = module.declare_external("c_op")
        f = module.add_function("nested", INT32)
        b = IRBuilder(f)
        entry, chk, hit, miss, ok = b.blocks("entry", "chk", "hit", "miss", "ok")
        b.position_at_end(entry)
        rc = b.call(c)
        b.br(b.icmp(CmpPredicate.SLT, rc, 0), chk, ok)
        b.position_at_end(chk)
        b.br(b.icmp(CmpPredicate.EQ, rc, -2), hit, miss)
        for bb, code in ((hit, 0), (miss, -1), (ok, 0)):
            b.position_at_end(bb)
            b.ret(code)
        model = FunctionModel(f)
        summary = ErrorSummary()
        at_hit = relevant_facts(summary, model, hit, rc)
        at_miss = relevant_facts(summary, model, miss, rc)
        assert [v for v in (-2, -1, 0, 3) if evaluate(at_hit, v)] == [-2]
        assert [v for v in (-2, -1, 0, 3) if evaluate(at_miss, v)] == [-1]

    def test_several_dependencies_disjoin(self, module):
        c = module.declare_external("c_op")
        f = module.add_function("either", INT32)
        b = IRBuilder(f)
        entry, chk, bad, ok = b.blocks("entry", "chk", "bad", "ok")
        b.position_at_end(entry)
        rc = b.call(c)
        b.br(b.icmp(CmpPredicate.EQ, rc, -1), bad, chk)
        b.position_at_end(chk)
        b.br(b.icmp(CmpPredicate.EQ, rc, -2), bad, ok)
        b.position_at_end(bad)
        b.ret(-9)
        b.position_at_end(ok)
        b.ret(0)
        model = FunctionModel(f)
        fact = relevant_facts(ErrorSummary(), model, bad, rc)
        assert evaluate(fact, -1)
        assert evaluate(fact, -2)
        assert not evaluate(fact, 0)

    def test_unrelated_dependency_is_walked_through(self, module):
        c = module.declare_external("c_op")
        d = module.declare_external("d_op")
        f = module.add_function("two_calls", INT32)
        b = IRBuilder(f)
        entry, mid, err, ok2, ok = b.blocks("entry", "mid", "err", "ok2", "ok")
        b.position_at_end(entry)
        rc = b.call(c)
        b.br(b.icmp(CmpPredicate.SLT, rc, 0), mid, ok)
        b.position_at_end(mid)
        r2 = b.call(d)
        b.br(b.icmp(CmpPredicate.EQ, r2, 5), err, ok2)
        for bb, code in ((err, -1), (ok2, 1), (ok, 0)):
            b.position_at_end(bb)
            b.ret(code)
        model = FunctionModel(f)
        summary = ErrorSummary()
        assert relevant_facts(summary, model, err, rc) == \
            Relation(RelOp.LT, X, IntConst(0))
        assert relevant_facts(summary, model, err, r2) == eq(5)

    def test_comparison_with_non_constant(self, module):
        c = module.declare_external("c_op")
        f = module.add_function("cmp_arg", INT32, params=[INT32])
        b = IRBuilder(f)
        entry, err, ok = b.blocks("entry", "err", "ok")
        b.position_at_end(entry)
        rc = b.call(c)
        b.br(b.icmp(CmpPredicate.EQ, rc, f.arguments[0]), err, ok)
        b.position_at_end(err)
        b.ret(-1)
        b.position_at_end(ok)
        b.ret(0)
        model = FunctionModel(f)
        assert relevant_facts(ErrorSummary(), model, err, rc) is None

    def test_casts_are_looked_through(self, module):
        c = module.declare_external("c_op")
        f = module.add_function("widened", INT32)
        b = IRBuilder(f)
        entry, err, ok = b.blocks("entry", "err", "ok")
        b.position_at_end(entry)
        rc = b.call(c)
        wide = b.cast(CastKind.SEXT, rc, INT32)
        b.br(b.icmp(CmpPredicate.SLE, wide, -1), err, ok)
        b.position_at_end(err)
        b.ret(-1)
        b.position_at_end(ok)
        b.ret(0)
        model = FunctionModel(f)
        assert relevant_facts(ErrorSummary(), model, err, rc) == \
            Relation(RelOp.LE, X, IntConst(-1))


class TestLoops:

    def _retry_loop(self, module):
        """``rc = c_op(); while (rc == -1) { } return 0;``"""
        c = module.declare_external("c_op")
        f = module.add_function("retry", INT32)
        b = IRBuilder(f)
        entry, header, body, out = b.blocks("entry", "header", "body", "out")
        b.position_at_end(entry)
        rc = b.call(c, name="rc")
        b.jump(header)
        b.position_at_end(header)
        br = b.br(b.icmp(CmpPredicate.EQ, rc, -1), body, out)
        b.position_at_end(body)
        b.jump(header)
        b.position_at_end(out)
        b.ret(0)
        return FunctionModel(f), rc, br, header, body

    def test_header_depends_on_itself(self, module):
        model, _, br, header, _ = self._retry_loop(module)
        assert model.direct_control_dependencies(header.terminator) == [br]

    def test_revisited_dependency_adds_nothing(self, module):
        model, rc, _, header, body = self._retry_loop(module)
        summary = ErrorSummary()
        assert relevant_facts(summary, model, header, rc) == Negation(eq(-1))
        assert relevant_facts(summary, model, body, rc) == eq(-1)


class TestBuilderDepth:

    def test_long_dependence_chain_does_not_recurse(self, module):
        c = module.declare_external("c_op")
        f = module.add_function("deep", INT32)
        b = IRBuilder(f)
        entry = f.add_block("entry")
        b.position_at_end(entry)
        rc = b.call(c)
        cur = entry
        depth = 400
        for i in range(depth):
            nxt, out = b.blocks(f"n{i}", f"o{i}")
            b.position_at_end(cur)
            b.br(b.icmp(CmpPredicate.NE, rc, -(i + 1)), nxt, out)
            b.position_at_end(out)
            b.ret(i)
            cur = nxt
        b.position_at_end(cur)
        b.ret(-1)
        model = FunctionModel(f)
        fact = PathConditionBuilder(model, rc).build(cur)
        assert evaluate(fact, 5000)
        assert not evaluate(fact, -1)

    def test_checked_call_helper(self, module):
        ext = module.declare_external("c_op")
        shape = build_checked_call(module, "f", ext, -4, predicate=CmpPredicate.SLT)
        model = FunctionModel(shape.function)
        assert relevant_facts(ErrorSummary(), model, shape.err, shape.rc) == \
            Relation(RelOp.LT, X, IntConst(-4))
