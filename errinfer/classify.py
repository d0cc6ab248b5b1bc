"""
errinfer/classify.py
════════════════════

Block classification: the facts every later rule builds on.

reports_success
    A block with a single predecessor that always returns the same
    constant, reached through a branch that checks a call against its
    known error codes in a way that provably excludes the error values.
    The constant becomes a success code of the function.

handles_known_error
    A block returning a constant, control dependent on a check of a call
    against its known error codes, on a path where an error value is
    possible.  The block's calls and the constant form a new descriptor,
    unless the constant is a known success code of the function; then
    the contradicted codes are retracted instead.

All rules take the summary being built and return it, updated.  Any
sub-computation that cannot decide leaves the block unclassified.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, List, Optional, Sequence, Tuple

from errinfer.annotations import (
    ErrorArgument,
    ErrorBlock,
    ErrorDescriptor,
    ErrorInt,
    ErrorSummary,
    FuncAnnotation,
    FunctionCall,
    IntegerCodes,
    PointerCodes,
    SuccessBlock,
    Witness,
    find_reports_errors,
)
from errinfer.diagnostics import SourceLocation
from errinfer.formula import Formula, any_of, conjoin
from errinfer.ir import (
    Argument,
    BasicBlock,
    BranchInst,
    CallInst,
    ConstantInt,
    Function,
    ICmpInst,
    Instruction,
    Value,
    called_function,
    constant_int_value,
    ignore_casts,
)
from errinfer.path_conditions import relevant_facts

logger = logging.getLogger(__name__)

TAG = "ErrorAnalysis"


# ---------------------------------------------------------------------------
# Known error codes of a checked call
# ---------------------------------------------------------------------------

def err_ret_vals(annotations: Sequence[FuncAnnotation]) -> Optional[List[int]]:
    annot = find_reports_errors(annotations)
    if annot is None:
        return None
    return annot.returns.sorted_codes()


def error_return_values(ctx, summary: ErrorSummary, callees: Sequence[Value],
                        call: CallInst) -> Optional[List[int]]:
    """Error codes shared by every candidate callee of *call*.

    Every candidate must have a summary.  Identical code sets are trusted;
    disjoint sets are reported and ignored; anything else is ignored
    silently.
    """
    if not callees:
        return None
    code_sets = []
    for callee in callees:
        rvs = err_ret_vals(ctx.lookup_summary_list(summary, callee))
        if rvs is None:
            return None
        code_sets.append(frozenset(rvs))
    first = code_sets[0]
    if all(s == first for s in code_sets[1:]):
        return sorted(first)
    if any(not (s & first) for s in code_sets[1:]):
        bb = call.block
        loc = SourceLocation(bb.function.name, bb.name) if bb is not None else None
        label = call.callee.name or repr(call.callee)
        summary.diagnostics.emit_warning(
            loc, TAG, f"Mismatched error return codes for indirect call {label}")
    return None


def target_of_error_check(ctx, summary: ErrorSummary,
                          inst: Optional[Instruction]) -> Optional[Tuple[CallInst, Formula]]:
    """If *inst* branches on a comparison of a call result, the call and
    the formula "x is one of the callee's error codes"."""
    if not isinstance(inst, BranchInst) or not isinstance(inst.condition, ICmpInst):
        return None
    cmp = inst.condition
    call = None
    for operand in (cmp.lhs, cmp.rhs):
        v = ignore_casts(operand)
        if isinstance(v, CallInst):
            call = v
            break
    if call is None:
        return None
    rvs = error_return_values(ctx, summary, ctx.call_targets(call.callee), call)
    if rvs is None:
        return None
    return call, any_of(rvs)


# ---------------------------------------------------------------------------
# Descriptors from blocks
# ---------------------------------------------------------------------------

def call_arg_actions(arguments: Sequence[Value]):
    acts = {}
    for ix, v in enumerate(arguments):
        if isinstance(v, Argument):
            acts[ix] = ErrorArgument(str(v.type), v.index)
        elif isinstance(v, ConstantInt):
            acts[ix] = ErrorInt(v.value)
    return acts


def instructions_to_actions(
    instructions: Sequence[Instruction],
) -> Tuple[List[FunctionCall], FrozenSet[Value]]:
    """Reporting calls of a block and the values used as call arguments.

    Instructions are scanned backwards so a call whose result only feeds
    another call (``log(strerror(e))``) is not counted as an action.
    """
    actions: List[FunctionCall] = []
    used_as_args = set()
    for inst in reversed(instructions):
        if not isinstance(inst, CallInst):
            continue
        callee = called_function(inst)
        if callee is None:
            continue
        if inst not in used_as_args:
            actions.insert(0, FunctionCall.of(callee.name,
                                              call_arg_actions(inst.arguments)))
        for a in inst.arguments:
            used_as_args.add(a)
            used_as_args.add(ignore_casts(a))
    return actions, frozenset(used_as_args)


def error_return_for(function: Function, code: int):
    if function.returns_pointer:
        return PointerCodes(frozenset([code]))
    return IntegerCodes(frozenset([code]))


def branch_to_error_descriptor(
    model, bb: BasicBlock,
) -> Optional[Tuple[ErrorDescriptor, FrozenSet[Value]]]:
    code = constant_int_value(model.block_return(bb))
    if code is None:
        return None
    actions, used = instructions_to_actions(bb.instructions)
    return ErrorDescriptor(frozenset(actions),
                           error_return_for(model.function, code)), used


# ---------------------------------------------------------------------------
# Summary updates
# ---------------------------------------------------------------------------

def add_error_descriptor(ctx, summary: ErrorSummary, function: Function,
                         desc: ErrorDescriptor) -> ErrorSummary:
    """Record *desc*; integer codes also become known error codes."""
    summary.add_descriptor(function, desc)
    if desc.returns.is_integer:
        ctx.state.error_codes |= desc.returns.codes
    return summary


def fits_success_model(ctx, function: Function, desc: ErrorDescriptor) -> bool:
    if not desc.returns.is_integer:
        return False
    return bool(desc.returns.codes & ctx.state.success_codes_for(function))


def remove_improbable_errors(summary: ErrorSummary, function: Function,
                             desc: ErrorDescriptor) -> ErrorSummary:
    """Drop the codes of *desc* from every integer descriptor of
    *function*; descriptors left without codes disappear."""
    if not desc.returns.is_integer or function not in summary.descriptors:
        return summary
    bad = desc.returns.codes
    kept = set()
    for d in summary.descriptors[function]:
        if not d.returns.is_integer or not (d.returns.codes & bad):
            kept.add(d)
            continue
        remaining = d.returns.codes - bad
        if remaining:
            kept.add(ErrorDescriptor(d.actions, IntegerCodes(remaining),
                                     d.witnesses))
    if kept != summary.descriptors[function]:
        logger.debug("Retracted codes %s from %s", sorted(bad), function.name)
    summary.descriptors[function] = kept
    return summary


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _same_int_on_all_paths(values: Sequence[Value]) -> Optional[int]:
    if not values:
        return None
    first = values[0]
    if any(v != first for v in values[1:]):
        return None
    return constant_int_value(first)


def reports_success(ctx, model, summary: ErrorSummary,
                    bb: BasicBlock) -> ErrorSummary:
    pred = model.single_predecessor(bb)
    if pred is None:
        return summary
    code = _same_int_on_all_paths(model.block_returns(bb))
    if code is None:
        return summary
    check = target_of_error_check(ctx, summary, model.terminator(pred))
    if check is None:
        return summary
    target, is_error = check
    facts = relevant_facts(summary, model, bb, target)
    if facts is None:
        return summary
    if ctx.is_satisfiable(conjoin(is_error, facts)) is False:
        f = model.function
        ctx.state.add_success_code(f, code)
        summary.basic_facts[bb] = SuccessBlock()
        logger.debug("%s:%s reports success with %d", f.name, bb.name, code)
    return summary


def check_for_known_error_return(ctx, model, bb: BasicBlock,
                                 summary: ErrorSummary,
                                 branch: Instruction) -> ErrorSummary:
    check = target_of_error_check(ctx, summary, branch)
    if check is None:
        return summary
    target, is_error = check
    facts = relevant_facts(summary, model, bb, target)
    if facts is None:
        return summary
    if ctx.is_satisfiable(conjoin(is_error, facts)) is not True:
        return summary
    built = branch_to_error_descriptor(model, bb)
    if built is None:
        return summary
    desc, used = built
    desc = desc.with_witnesses([Witness(target, "check error return"),
                                Witness(branch, "return error code")])
    f = model.function
    if fits_success_model(ctx, f, desc):
        summary.basic_facts[bb] = SuccessBlock()
        return remove_improbable_errors(summary, f, desc)
    summary.basic_facts[bb] = ErrorBlock(used)
    return add_error_descriptor(ctx, summary, f, desc)


def handles_known_error(ctx, model, summary: ErrorSummary,
                        bb: BasicBlock) -> ErrorSummary:
    if constant_int_value(model.block_return(bb)) is None:
        return summary
    for dep in model.control_dependencies(model.terminator(bb)):
        summary = check_for_known_error_return(ctx, model, bb, summary, dep)
    return summary


def extract_basic_facts(ctx, models, summary: ErrorSummary) -> ErrorSummary:
    """Success blocks of every function first, then known error blocks."""
    for model in models:
        for bb in model.blocks:
            summary = reports_success(ctx, model, summary, bb)
    for model in models:
        for bb in model.blocks:
            summary = handles_known_error(ctx, model, summary, bb)
    return summary
