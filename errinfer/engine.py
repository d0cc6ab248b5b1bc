"""
errinfer/engine.py
══════════════════

Whole-program fixpoint of the error-handling inference.

Each iteration applies four rules to every block of every function:

1. **Extract basic facts** (:func:`errinfer.classify.extract_basic_facts`):
   success blocks and blocks handling a known error.
2. **Generalise from error-reporting functions**: an unclassified block
   that returns a constant which is not a known success code, and calls a
   function believed to report errors, yields a descriptor for that call.
3. **Generalise from error codes**: reserved; learns nothing.
4. **Transitive errors**: a block returning, up to casts, the result of a
   call to a function with known integer error codes inherits those codes
   that the conditions in scope at the return do not rule out.

Iteration stops when neither the summary nor the learned state changes.

Entry points
------------
    compute_error_summary(functions, dependency_summary,
                          indirect_call_summary, options=None, oracle=None)
    identify_error_handling  (alias)
    error_handling_training_data(functions, dependency_summary,
                                 indirect_call_summary, oracle=None)
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Set, Tuple, Union

from errinfer.annotations import (
    ErrorDescriptor,
    ErrorSummary,
    FunctionCall,
    IntegerCodes,
    Witness,
    find_reports_errors,
)
from errinfer.callgraph import build_callgraph
from errinfer.classifier import (
    ClassifierKind,
    FeatureVector,
    classify_error_functions,
    compute_features,
    error_func_heuristic,
)
from errinfer.classify import (
    add_error_descriptor,
    error_return_for,
    extract_basic_facts,
)
from errinfer.config import ErrorAnalysisOptions, default_error_analysis_options
from errinfer.context import AnalysisContext
from errinfer.ctrlflow import FunctionModel
from errinfer.formula import IntConst, Relation, RelOp, X, conjoin
from errinfer.ir import (
    BasicBlock,
    CallInst,
    Function,
    Value,
    called_function,
    constant_int_value,
    ignore_casts,
)
from errinfer.oracle import CachingOracle, SatOracle, Z3Oracle
from errinfer.path_conditions import relevant_facts
from errinfer.summaries import DependencySummary, IndirectCallSummary

logger = logging.getLogger(__name__)

FunctionLike = Union[Function, FunctionModel]


# ═══════════════════════════════════════════════════════════════════════
#  PART 1 — GENERALISATION RULES
# ═══════════════════════════════════════════════════════════════════════

def generalize_block_from_error_functions(
    ctx: AnalysisContext,
    model: FunctionModel,
    summary: ErrorSummary,
    bb: BasicBlock,
    error_functions: Set[str],
    success_codes: Set[int],
) -> ErrorSummary:
    if bb in summary.basic_facts:
        return summary
    code = constant_int_value(model.block_return(bb))
    if code is None or code in success_codes:
        return summary
    calls: List[CallInst] = []
    for inst in bb.instructions:
        if isinstance(inst, CallInst):
            callee = called_function(inst)
            if callee is not None and callee.name in error_functions:
                calls.append(inst)
    if not calls:
        return summary
    actions = frozenset(FunctionCall(called_function(c).name) for c in calls)
    witnesses = tuple(Witness(c, "calls error-reporting function") for c in calls)
    desc = ErrorDescriptor(actions, error_return_for(model.function, code),
                           witnesses)
    return add_error_descriptor(ctx, summary, model.function, desc)


def generalize_from_error_codes(
    ctx: AnalysisContext,
    model: FunctionModel,
    summary: ErrorSummary,
    bb: BasicBlock,
) -> ErrorSummary:
    # No generalisation from learned codes is defined yet; the hook keeps
    # the rule order stable for when one is.
    return summary


def returns_transitive_error(
    ctx: AnalysisContext,
    model: FunctionModel,
    summary: ErrorSummary,
    bb: BasicBlock,
) -> ErrorSummary:
    """Forward the callee's integer error codes through ``return call()``.

    Each code ``c`` is kept only if ``x == c`` is consistent with the path
    condition at *bb*, so codes intercepted by an earlier branch are not
    inherited.  An undecided query keeps the code.
    """
    if bb in summary.basic_facts:
        return summary
    rv = model.block_return(bb)
    if rv is None:
        return summary
    call = ignore_casts(rv)
    if not isinstance(call, CallInst):
        return summary
    priors = relevant_facts(summary, model, bb, call)
    witness = Witness(call, "transitive error")
    for callee in ctx.call_targets(call.callee):
        annot = find_reports_errors(ctx.lookup_summary_list(summary, callee))
        if annot is None or not annot.returns.is_integer:
            continue
        if priors is None:
            codes = annot.returns.codes
        else:
            codes = frozenset(
                c for c in annot.returns.codes
                if ctx.is_satisfiable(
                    conjoin(Relation(RelOp.EQ, X, IntConst(c)), priors)) is not False)
        if not codes:
            continue
        desc = ErrorDescriptor(annot.actions, IntegerCodes(codes), (witness,))
        summary = add_error_descriptor(ctx, summary, model.function, desc)
    return summary


# ═══════════════════════════════════════════════════════════════════════
#  PART 2 — FIXPOINT DRIVER
# ═══════════════════════════════════════════════════════════════════════

class ErrorHandlingAnalysis:
    """One inference run over a fixed set of function models.

    Parameters
    ----------
    models : sequence of FunctionModel
        Visited in the given order within each iteration.
    ctx : AnalysisContext
    max_iterations : int, optional
        Safety valve for callers embedding the engine; ``None`` iterates to
        the fixpoint.
    """

    def __init__(self, models: Sequence[FunctionModel], ctx: AnalysisContext,
                 max_iterations: Optional[int] = None):
        self.models = list(models)
        self.ctx = ctx
        self.max_iterations = max_iterations
        self.iterations = 0

    def error_functions(self, summary: ErrorSummary) -> Set[str]:
        classifier = self.ctx.options.classifier
        state = self.ctx.state
        if classifier.kind is ClassifierKind.NONE:
            return set()
        if classifier.kind is ClassifierKind.FEATURE:
            found = classify_error_functions(summary.basic_facts, self.models,
                                             classifier.function)
        else:
            found = error_func_heuristic(summary)
        state.error_functions |= found
        return set(state.error_functions)

    def _by_block(self, rule, summary: ErrorSummary, *args) -> ErrorSummary:
        for model in self.models:
            for bb in model.blocks:
                summary = rule(self.ctx, model, summary, bb, *args)
        return summary

    def iterate(self, summary: ErrorSummary) -> ErrorSummary:
        """Apply all four rules once; *summary* itself is left untouched."""
        s = summary.copy()
        s = extract_basic_facts(self.ctx, self.models, s)

        err_funcs = self.error_functions(s)
        succ_codes = self.ctx.state.success_codes()
        s = self._by_block(generalize_block_from_error_functions, s,
                           err_funcs, succ_codes)

        if self.ctx.options.generalize_from_returns:
            s = self._by_block(generalize_from_error_codes, s)

        s = self._by_block(returns_transitive_error, s)
        return s

    def run(self, summary: Optional[ErrorSummary] = None) -> ErrorSummary:
        current = summary if summary is not None else ErrorSummary()
        while True:
            before = (self.ctx.state.snapshot(),
                      {f: frozenset(c) for f, c in self.ctx.state.success_model.items()})
            nxt = self.iterate(current)
            self.iterations += 1
            after = (self.ctx.state.snapshot(),
                     {f: frozenset(c) for f, c in self.ctx.state.success_model.items()})
            logger.debug("iteration %d: %r, %d error code(s), %d error function(s)",
                         self.iterations, nxt, len(self.ctx.state.error_codes),
                         len(self.ctx.state.error_functions))
            if nxt == current and before == after:
                logger.info("Error analysis converged after %d iteration(s): %r",
                            self.iterations, nxt)
                return nxt
            current = nxt
            if self.max_iterations is not None and \
                    self.iterations >= self.max_iterations:
                logger.warning("Error analysis stopped after %d iteration(s) "
                               "without converging", self.iterations)
                return current


# ═══════════════════════════════════════════════════════════════════════
#  PART 3 — ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════════

def _as_models(functions: Iterable[FunctionLike]) -> List[FunctionModel]:
    return [f if isinstance(f, FunctionModel) else FunctionModel(f)
            for f in functions]


def _make_context(
    dependency_summary: Optional[DependencySummary],
    indirect_call_summary: Optional[IndirectCallSummary],
    options: ErrorAnalysisOptions,
    oracle: Optional[SatOracle],
) -> AnalysisContext:
    if oracle is None:
        oracle = CachingOracle(Z3Oracle(timeout_ms=options.solver_timeout_ms))
    return AnalysisContext(
        dependency_summary or DependencySummary(),
        indirect_call_summary or IndirectCallSummary(),
        oracle,
        options,
    )


def compute_error_summary(
    functions: Iterable[FunctionLike],
    dependency_summary: Optional[DependencySummary] = None,
    indirect_call_summary: Optional[IndirectCallSummary] = None,
    options: Optional[ErrorAnalysisOptions] = None,
    oracle: Optional[SatOracle] = None,
) -> ErrorSummary:
    """Infer how every function in *functions* reports errors.

    Raises
    ------
    ProgramModelError
        If a function handed in is malformed.
    """
    options = options or default_error_analysis_options()
    models = _as_models(functions)
    ctx = _make_context(dependency_summary, indirect_call_summary, options, oracle)
    if options.order_by_callgraph:
        by_handle = {m.function.handle: m for m in models}
        cg = build_callgraph([m.function for m in models], ctx.indirect_calls)
        models = [by_handle[f.handle] for f in cg.bottom_up_order()]
    logger.info("Analysing error handling of %d function(s)", len(models))
    analysis = ErrorHandlingAnalysis(models, ctx)
    summary = analysis.run()
    if isinstance(ctx.oracle, CachingOracle):
        logger.debug("oracle statistics: %s", ctx.oracle.statistics())
    return summary


identify_error_handling = compute_error_summary


def error_handling_training_data(
    functions: Iterable[FunctionLike],
    dependency_summary: Optional[DependencySummary] = None,
    indirect_call_summary: Optional[IndirectCallSummary] = None,
    oracle: Optional[SatOracle] = None,
) -> List[Tuple[Value, FeatureVector]]:
    """Feature vectors of every called function after one round of basic
    fact extraction, for training a feature classifier offline."""
    models = _as_models(functions)
    ctx = _make_context(dependency_summary, indirect_call_summary,
                        default_error_analysis_options(), oracle)
    summary = extract_basic_facts(ctx, models, ErrorSummary())
    return list(compute_features(summary.basic_facts, models).items())
