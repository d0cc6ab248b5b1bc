# tests/test_annotations.py
"""Data model: descriptors, summaries, stores."""

import pytest

from errinfer.annotations import (
    Allocator,
    ErrorArgument,
    ErrorBlock,
    ErrorDescriptor,
    ErrorInt,
    ErrorState,
    ErrorSummary,
    FunctionCall,
    IntegerCodes,
    NoReturn,
    PointerCodes,
    SuccessBlock,
    find_reports_errors,
    sorted_descriptors,
)
from errinfer.ir import CastKind, IRBuilder, PTR
from errinfer.summaries import DependencySummary, IndirectCallSummary, call_targets
from tests.conftest import reports


class TestErrorReturn:

    def test_empty_code_set_rejected(self):
        with pytest.raises(ValueError):
            IntegerCodes(frozenset())
        with pytest.raises(ValueError):
            PointerCodes(frozenset())

    def test_kinds_are_distinct(self):
        assert IntegerCodes(frozenset({0})) != PointerCodes(frozenset({0}))
        assert IntegerCodes(frozenset({0})).is_integer
        assert not PointerCodes(frozenset({0})).is_integer

    def test_with_codes_keeps_kind(self):
        p = PointerCodes(frozenset({0})).with_codes([-1])
        assert p == PointerCodes(frozenset({-1}))


class TestFunctionCall:

    def test_arguments_sorted_by_position(self):
        call = FunctionCall.of("log", {2: ErrorInt(1), 0: ErrorArgument("i32", 0)})
        assert call.arguments == ((0, ErrorArgument("i32", 0)), (2, ErrorInt(1)))
        assert str(call) == "log(0=ErrorArgument(type_name='i32', index=0), 2=ErrorInt(value=1))"

    def test_hashable(self):
        assert len({FunctionCall.of("a", {0: ErrorInt(1)}),
                    FunctionCall.of("a", {0: ErrorInt(1)})}) == 1


class TestDescriptors:

    def test_sorted_descriptors(self):
        a = ErrorDescriptor(frozenset(), PointerCodes(frozenset({-1})))
        b = ErrorDescriptor(frozenset(), IntegerCodes(frozenset({-2})))
        c = ErrorDescriptor(frozenset({FunctionCall("x")}),
                            IntegerCodes(frozenset({-2})))
        assert sorted_descriptors([a, c, b]) == [b, c, a]

    def test_find_reports_errors(self):
        r = reports(-1)
        assert find_reports_errors([NoReturn(), r, Allocator()]) is r
        assert find_reports_errors([NoReturn()]) is None


class TestErrorSummary:

    def test_equality_ignores_diagnostics_and_cache(self, checked):
        a = ErrorSummary()
        b = ErrorSummary()
        a.formula_cache[(1, 2, 3)] = None
        a.diagnostics.emit_warning(None, "t", "m")
        assert a == b
        b.basic_facts[checked.ok] = SuccessBlock()
        assert a != b

    def test_empty_descriptor_sets_do_not_count(self, checked):
        a = ErrorSummary()
        a.descriptors[checked.function] = set()
        assert a == ErrorSummary()

    def test_copy_is_independent(self, checked):
        a = ErrorSummary()
        b = a.copy()
        b.add_descriptor(checked.function, ErrorDescriptor(
            frozenset(), IntegerCodes(frozenset({-1}))))
        b.basic_facts[checked.err] = ErrorBlock()
        assert a.descriptors == {} and a.basic_facts == {}
        assert b.diagnostics is a.diagnostics

    def test_not_hashable(self):
        with pytest.raises(TypeError):
            hash(ErrorSummary())


class TestErrorState:

    def test_success_codes(self, module):
        f = module.add_function("f")
        g = module.add_function("g")
        state = ErrorState()
        state.add_success_code(f, 0)
        state.add_success_code(g, 1)
        assert state.success_codes() == {0, 1}
        assert state.success_codes_for(f) == {0}
        assert state.success_codes_for(module.add_function("h")) == set()

    def test_snapshot(self):
        state = ErrorState()
        state.error_codes.add(-1)
        snap = state.snapshot()
        state.error_codes.add(-2)
        assert snap == (frozenset({-1}), frozenset())


class TestStores:

    def test_dependency_summary(self, module):
        deps = DependencySummary()
        ext = module.declare_external("read_block")
        assert deps.lookup_function_summary(ext) is None
        deps.add("read_block", reports(-1))
        assert deps.lookup_function_summary(ext) == [reports(-1)]
        assert "read_block" in deps and len(deps) == 1

    def test_indirect_targets_through_bitcast(self, module):
        impl = module.declare_external("impl")
        f = module.add_function("f", params=[PTR])
        b = IRBuilder(f)
        b.position_at_end(f.add_block("entry"))
        cast = b.cast(CastKind.BITCAST, f.arguments[0], PTR)
        ics = IndirectCallSummary({f.arguments[0]: [impl, impl]})
        assert ics.targets(f.arguments[0]) == [impl]
        assert call_targets(ics, cast) == [impl]
        assert call_targets(ics, impl) == [impl]
        assert call_targets(IndirectCallSummary(), f.arguments[0]) == []
