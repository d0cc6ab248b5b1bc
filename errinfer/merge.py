"""
errinfer/merge.py
═════════════════

Canonicalises the descriptor set of one function into the single
``ReportsErrors`` annotation exported to callers and to downstream
consumers.

Merge policy
------------
Return codes
    Union of all codes.  Integer and pointer codes never mix: when any
    descriptor reports integer codes, pointer-code descriptors are left out
    of the whole merge, their actions and witnesses included.
Actions
    If every descriptor has the same action set, that set.  Otherwise, if
    some descriptors have exactly one action, the first such set in sorted
    order (multi-action descriptors tend to include cleanup calls that are
    not error reporting).  Otherwise the empty set.
Witnesses
    Concatenated over all descriptors, in sorted descriptor order.
"""

from __future__ import annotations

from typing import FrozenSet, List, Optional, Sequence, Tuple

from errinfer.annotations import (
    ErrorDescriptor,
    ErrorReturn,
    ErrorSummary,
    FuncAnnotation,
    FunctionCall,
    IntegerCodes,
    PointerCodes,
    ReportsErrors,
    Witness,
    sorted_descriptors,
)
from errinfer.ir import ExternalFunction, Function, Value
from errinfer.summaries import DependencySummary


def unify_return_codes(descs: Sequence[ErrorDescriptor]) -> ErrorReturn:
    if not descs:
        raise ValueError("cannot unify an empty descriptor list")
    int_codes = set()
    ptr_codes = set()
    for d in descs:
        if d.returns.is_integer:
            int_codes |= d.returns.codes
        else:
            ptr_codes |= d.returns.codes
    if int_codes:
        return IntegerCodes(frozenset(int_codes))
    return PointerCodes(frozenset(ptr_codes))


def unify_error_actions(descs: Sequence[ErrorDescriptor]) -> FrozenSet[FunctionCall]:
    if not descs:
        return frozenset()
    first = descs[0].actions
    if all(d.actions == first for d in descs):
        return first
    singles = [d.actions for d in descs if len(d.actions) == 1]
    if singles:
        return min(singles, key=lambda acts: next(iter(acts)).sort_key())
    return frozenset()


def summarize_function(summary: ErrorSummary,
                       function: Function) -> List[Tuple[ReportsErrors, List[Witness]]]:
    """The exported annotation of *function* with its witnesses, or an
    empty list when nothing is known."""
    descs = sorted_descriptors(summary.descriptors.get(function, ()))
    if not descs:
        return []
    returns = unify_return_codes(descs)
    descs = [d for d in descs if d.returns.is_integer == returns.is_integer]
    actions = unify_error_actions(descs)
    witnesses = [w for d in descs for w in d.witnesses]
    return [(ReportsErrors(actions, returns), witnesses)]


error_descriptors_for = summarize_function


def lookup_function_summary_list(
    summary: ErrorSummary,
    dependency_summary: DependencySummary,
    callee: Value,
) -> List[FuncAnnotation]:
    """Annotations visible for *callee* at this point of the run.

    Defined functions are summarised from the summary being built, so
    facts learned earlier in the run reach their callers.  External
    functions come from the dependency summary.
    """
    if isinstance(callee, Function):
        return [annot for annot, _ in summarize_function(summary, callee)]
    if isinstance(callee, ExternalFunction):
        found: Optional[List[FuncAnnotation]] = \
            dependency_summary.lookup_function_summary(callee)
        return found or []
    return []
