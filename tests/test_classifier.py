# tests/test_classifier.py
"""Error-reporting function recognition and feature vectors."""

import pytest

from errinfer.annotations import (
    ErrorBlock,
    ErrorDescriptor,
    ErrorSummary,
    FunctionCall,
    IntegerCodes,
    SuccessBlock,
)
from errinfer.classifier import (
    FEATURE_VECTOR_LENGTH,
    Classifier,
    ClassifierKind,
    ErrorFuncClass,
    classify_error_functions,
    compute_features,
    error_func_heuristic,
)
from errinfer.config import ErrorAnalysisOptions, default_error_analysis_options


class TestClassifierVariant:

    def test_constructors(self):
        assert Classifier.none().kind is ClassifierKind.NONE
        assert Classifier.default().kind is ClassifierKind.DEFAULT
        fn = lambda vec: ErrorFuncClass.ERROR_REPORTER  # noqa: E731
        feature = Classifier.feature(fn)
        assert feature.kind is ClassifierKind.FEATURE and feature.function is fn

    def test_feature_needs_a_function(self):
        with pytest.raises(ValueError):
            Classifier.feature(None)

    def test_default_options(self):
        opts = default_error_analysis_options()
        assert opts == ErrorAnalysisOptions()
        assert opts.classifier.kind is ClassifierKind.DEFAULT
        assert opts.generalize_from_returns and opts.order_by_callgraph
        assert opts.solver_timeout_ms is None


class TestHeuristic:

    def test_only_single_action_descriptors(self, module):
        f = module.add_function("f")
        summary = ErrorSummary()
        summary.add_descriptor(f, ErrorDescriptor(
            frozenset({FunctionCall("log_error")}), IntegerCodes(frozenset({-1}))))
        summary.add_descriptor(f, ErrorDescriptor(
            frozenset({FunctionCall("free"), FunctionCall("warn")}),
            IntegerCodes(frozenset({-2}))))
        summary.add_descriptor(f, ErrorDescriptor(
            frozenset(), IntegerCodes(frozenset({-3}))))
        assert error_func_heuristic(summary) == {"log_error"}


class TestFeatures:

    def _facts(self, checked):
        return {checked.err: ErrorBlock(), checked.ok: SuccessBlock()}

    def test_vector_layout(self, checked):
        vectors = compute_features(self._facts(checked), [checked.model])
        by_name = {callee.name: vec for callee, vec in vectors.items()}
        log = by_name["log_error"]
        assert len(log) == FEATURE_VECTOR_LENGTH
        assert log[:5] == [1.0, 0.0, 0.0, 1.0, 1.0]
        assert log[5] == 1.0      # err returns a constant
        assert log[6] == 0.0      # no caller argument forwarded
        assert log[7] == 1.0      # literal argument 7
        assert log[8] == 1.0      # external
        assert log[9] == 0.0      # returns i32
        read = by_name["read_block"]
        assert read[:4] == [0.0, 0.0, 1.0, 0.0]
        assert read[5] == 0.0

    def test_ordered_by_first_call_site(self, checked):
        vectors = compute_features({}, [checked.model])
        assert [c.name for c in vectors] == ["read_block", "log_error"]

    def test_classify_error_functions(self, checked):
        names = classify_error_functions(
            self._facts(checked), [checked.model],
            lambda vec: (ErrorFuncClass.ERROR_REPORTER if vec[3] > 0.5
                         else ErrorFuncClass.NOT_ERROR_REPORTER))
        assert names == {"log_error"}
