"""
errinfer/classifier.py
══════════════════════

Recognising error-reporting functions.

The generalisation rule "a block returning a constant after calling an
error-reporting function is an error block" needs to know which functions
report errors.  Three strategies are available, selected by
:class:`Classifier`:

``NONE``
    Learn nothing; the rule never fires.
``DEFAULT``
    The sole action of every single-action descriptor learned so far.
``FEATURE``
    A user-supplied function maps a fixed-length feature vector per callee
    to an :class:`ErrorFuncClass`.  The vectors come from
    :func:`compute_features`; the engine also exports them as training data.

Feature vector layout (floats)::

    0  calls from error blocks
    1  calls from success blocks
    2  calls from unclassified blocks
    3  error-block ratio
    4  distinct calling functions
    5  ratio of call sites in blocks returning a constant
    6  ratio of error-block call sites forwarding a caller argument
    7  ratio of call sites passing an integer literal
    8  callee is external
    9  callee returns void
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set

from errinfer.annotations import BasicFact, ErrorBlock, ErrorSummary, SuccessBlock
from errinfer.ir import (
    Argument,
    BasicBlock,
    CallInst,
    ConstantInt,
    ExternalFunction,
    Function,
    VOID,
    Value,
    called_function,
    ignore_casts,
)

logger = logging.getLogger(__name__)

FEATURE_VECTOR_LENGTH = 10

FeatureVector = List[float]


class ErrorFuncClass(enum.Enum):
    ERROR_REPORTER = "error-reporter"
    NOT_ERROR_REPORTER = "not-error-reporter"


class ClassifierKind(enum.Enum):
    NONE = "none"
    DEFAULT = "default"
    FEATURE = "feature"


@dataclass(frozen=True)
class Classifier:
    kind: ClassifierKind
    function: Optional[Callable[[FeatureVector], ErrorFuncClass]] = None

    @classmethod
    def none(cls) -> "Classifier":
        return cls(ClassifierKind.NONE)

    @classmethod
    def default(cls) -> "Classifier":
        return cls(ClassifierKind.DEFAULT)

    @classmethod
    def feature(cls, fn: Callable[[FeatureVector], ErrorFuncClass]) -> "Classifier":
        if fn is None:
            raise ValueError("a feature classifier needs a classification function")
        return cls(ClassifierKind.FEATURE, fn)


def error_func_heuristic(summary: ErrorSummary) -> Set[str]:
    """Names of functions that are the only action of some descriptor."""
    names: Set[str] = set()
    for descs in summary.descriptors.values():
        for d in descs:
            if len(d.actions) == 1:
                names.add(next(iter(d.actions)).name)
    return names


class _CalleeStats:
    __slots__ = ("callee", "error", "success", "unclassified", "callers",
                 "const_return", "error_forwarding", "literal_args")

    def __init__(self, callee: Value) -> None:
        self.callee = callee
        self.error = 0
        self.success = 0
        self.unclassified = 0
        self.callers: Set[int] = set()
        self.const_return = 0
        self.error_forwarding = 0
        self.literal_args = 0

    @property
    def total(self) -> int:
        return self.error + self.success + self.unclassified

    def vector(self) -> FeatureVector:
        total = float(self.total) or 1.0
        callee = self.callee
        returns_void = isinstance(callee, (Function, ExternalFunction)) and \
            callee.return_type == VOID
        return [
            float(self.error),
            float(self.success),
            float(self.unclassified),
            self.error / total,
            float(len(self.callers)),
            self.const_return / total,
            self.error_forwarding / (float(self.error) or 1.0),
            self.literal_args / total,
            1.0 if isinstance(callee, ExternalFunction) else 0.0,
            1.0 if returns_void else 0.0,
        ]


def compute_features(basic_facts: Dict[BasicBlock, BasicFact],
                     models: Iterable) -> Dict[Value, FeatureVector]:
    """Feature vectors for every directly called function.

    *models* are :class:`~errinfer.ctrlflow.FunctionModel` objects.  The
    result is ordered by first call site.
    """
    stats: Dict[Value, _CalleeStats] = {}
    for model in models:
        for bb in model.blocks:
            fact = basic_facts.get(bb)
            returns_const = isinstance(model.block_return(bb), ConstantInt)
            for inst in bb.instructions:
                if not isinstance(inst, CallInst):
                    continue
                callee = called_function(inst)
                if callee is None:
                    continue
                s = stats.get(callee)
                if s is None:
                    s = stats[callee] = _CalleeStats(callee)
                s.callers.add(model.function.handle)
                args = [ignore_casts(a) for a in inst.arguments]
                if isinstance(fact, ErrorBlock):
                    s.error += 1
                    if any(isinstance(a, Argument) for a in args):
                        s.error_forwarding += 1
                elif isinstance(fact, SuccessBlock):
                    s.success += 1
                else:
                    s.unclassified += 1
                if returns_const:
                    s.const_return += 1
                if any(isinstance(a, ConstantInt) for a in args):
                    s.literal_args += 1
    return {callee: s.vector() for callee, s in stats.items()}


def classify_error_functions(
    basic_facts: Dict[BasicBlock, BasicFact],
    models: Iterable,
    fn: Callable[[FeatureVector], ErrorFuncClass],
) -> Set[str]:
    """Names of the callees *fn* labels as error reporters."""
    names: Set[str] = set()
    for callee, vec in compute_features(basic_facts, models).items():
        if fn(vec) is ErrorFuncClass.ERROR_REPORTER:
            names.add(callee.name)
    logger.debug("Feature classifier selected %d error function(s)", len(names))
    return names
