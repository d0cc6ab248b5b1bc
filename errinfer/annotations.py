"""
errinfer.annotations
====================

Data model of the error-handling inference.

Error descriptors
-----------------
An :class:`ErrorDescriptor` records one way a function signals failure:

* ``actions``   - the reporting calls made on the error path
                  (:class:`FunctionCall`), each with the arguments that could
                  be classified (:class:`ErrorInt` literals and
                  :class:`ErrorArgument` forwarded parameters);
* ``returns``   - the constant(s) returned, either :class:`IntegerCodes` or
                  :class:`PointerCodes` (never both);
* ``witnesses`` - provenance: the instructions that justified the descriptor.

Summaries
---------
:class:`ErrorSummary` is the value threaded through the fixpoint.  It maps
functions to descriptor sets and blocks to :class:`BasicFact`\\ s, and
carries the run's diagnostics and formula cache.  Two summaries are equal
when their descriptors and basic facts are; the diagnostics and the cache
do not take part.

:class:`ErrorState` holds what the generalisation rules have learned so
far: error codes, error-reporting function names and per-function success
codes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from errinfer.diagnostics import Diagnostics
from errinfer.ir import BasicBlock, Function, Value


# ---------------------------------------------------------------------------
# Error actions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorInt:
    """An integer literal passed to a reporting call."""
    value: int

    def sort_key(self) -> Tuple:
        return (0, self.value, "")


@dataclass(frozen=True)
class ErrorArgument:
    """A parameter of the enclosing function forwarded to a reporting call."""
    type_name: str
    index: int

    def sort_key(self) -> Tuple:
        return (1, self.index, self.type_name)


ErrorActionArgument = Union[ErrorInt, ErrorArgument]


@dataclass(frozen=True)
class FunctionCall:
    """A call to *name* on an error path.

    ``arguments`` holds ``(position, argument)`` pairs sorted by position;
    positions whose argument is neither a literal nor a forwarded parameter
    are omitted.
    """
    name: str
    arguments: Tuple[Tuple[int, ErrorActionArgument], ...] = ()

    @classmethod
    def of(cls, name: str,
           arguments: Optional[Mapping[int, ErrorActionArgument]] = None
           ) -> "FunctionCall":
        items = tuple(sorted((arguments or {}).items()))
        return cls(name, items)

    def argument_map(self) -> Dict[int, ErrorActionArgument]:
        return dict(self.arguments)

    def sort_key(self) -> Tuple:
        return (self.name, tuple((p, a.sort_key()) for p, a in self.arguments))

    def __str__(self) -> str:
        args = ", ".join(f"{p}={a}" for p, a in self.arguments)
        return f"{self.name}({args})"


ErrorAction = FunctionCall


# ---------------------------------------------------------------------------
# Returned codes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorReturn:
    codes: FrozenSet[int]

    def __post_init__(self) -> None:
        codes = frozenset(self.codes)
        if not codes:
            raise ValueError(f"{type(self).__name__} needs at least one code")
        object.__setattr__(self, "codes", codes)

    @property
    def is_integer(self) -> bool:
        return False

    def sorted_codes(self) -> List[int]:
        return sorted(self.codes)

    def with_codes(self, codes: Iterable[int]) -> "ErrorReturn":
        return type(self)(frozenset(codes))

    def sort_key(self) -> Tuple:
        return (0 if self.is_integer else 1, tuple(self.sorted_codes()))


@dataclass(frozen=True)
class IntegerCodes(ErrorReturn):
    """Integer error codes (``return -1``)."""

    @property
    def is_integer(self) -> bool:
        return True


@dataclass(frozen=True)
class PointerCodes(ErrorReturn):
    """Pointer-typed constant error returns (``return (void *)-1``)."""


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Witness:
    """Instruction that justified a descriptor, with a short tag."""
    instruction: Value
    tag: str

    def sort_key(self) -> Tuple:
        return (self.instruction.handle, self.tag)

    def __str__(self) -> str:
        return f"{self.tag} @ %{self.instruction.handle}"


@dataclass(frozen=True)
class ErrorDescriptor:
    actions: FrozenSet[FunctionCall]
    returns: ErrorReturn
    witnesses: Tuple[Witness, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "actions", frozenset(self.actions))
        object.__setattr__(self, "witnesses", tuple(self.witnesses))

    def with_witnesses(self, witnesses: Iterable[Witness]) -> "ErrorDescriptor":
        return ErrorDescriptor(self.actions, self.returns, tuple(witnesses))

    def sorted_actions(self) -> List[FunctionCall]:
        return sorted(self.actions, key=FunctionCall.sort_key)

    def sort_key(self) -> Tuple:
        return (self.returns.sort_key(),
                tuple(a.sort_key() for a in self.sorted_actions()),
                tuple(w.sort_key() for w in self.witnesses))


def sorted_descriptors(descs: Iterable[ErrorDescriptor]) -> List[ErrorDescriptor]:
    return sorted(descs, key=ErrorDescriptor.sort_key)


# ---------------------------------------------------------------------------
# Basic facts
# ---------------------------------------------------------------------------

class BasicFact:
    """Classification of a block; see :class:`ErrorBlock` and
    :class:`SuccessBlock`."""


@dataclass(frozen=True)
class ErrorBlock(BasicFact):
    """The block handles an error.  ``forwarded_args`` are the values used
    as arguments of the block's calls."""
    forwarded_args: FrozenSet[Value] = frozenset()


@dataclass(frozen=True)
class SuccessBlock(BasicFact):
    pass


# ---------------------------------------------------------------------------
# Function annotations (summary store vocabulary)
# ---------------------------------------------------------------------------

class FuncAnnotation:
    """Base of the annotations a summary store may hold for a function."""


@dataclass(frozen=True)
class ReportsErrors(FuncAnnotation):
    actions: FrozenSet[FunctionCall]
    returns: ErrorReturn

    def __post_init__(self) -> None:
        object.__setattr__(self, "actions", frozenset(self.actions))


@dataclass(frozen=True)
class NoReturn(FuncAnnotation):
    pass


@dataclass(frozen=True)
class Allocator(FuncAnnotation):
    finalizer: Optional[str] = None


@dataclass(frozen=True)
class Finalizer(FuncAnnotation):
    pass


def find_reports_errors(annotations: Iterable[FuncAnnotation]) -> Optional[ReportsErrors]:
    """The first :class:`ReportsErrors` annotation, if any."""
    for a in annotations:
        if isinstance(a, ReportsErrors):
            return a
    return None


# ---------------------------------------------------------------------------
# Summary and fixpoint state
# ---------------------------------------------------------------------------

FormulaKey = Tuple[int, int, int]


class ErrorSummary:
    """Per-run result of the error-handling inference."""

    def __init__(
        self,
        descriptors: Optional[Dict[Function, Set[ErrorDescriptor]]] = None,
        basic_facts: Optional[Dict[BasicBlock, BasicFact]] = None,
        diagnostics: Optional[Diagnostics] = None,
        formula_cache: Optional[Dict[FormulaKey, Any]] = None,
    ) -> None:
        self.descriptors: Dict[Function, Set[ErrorDescriptor]] = descriptors or {}
        self.basic_facts: Dict[BasicBlock, BasicFact] = basic_facts or {}
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        # (function, block, target) handles -> Optional[Formula]
        self.formula_cache: Dict[FormulaKey, Any] = (
            formula_cache if formula_cache is not None else {})

    def copy(self) -> "ErrorSummary":
        """Copy the descriptor and fact maps; the diagnostics sink and the
        formula cache are shared, they belong to the run."""
        return ErrorSummary(
            {f: set(ds) for f, ds in self.descriptors.items()},
            dict(self.basic_facts),
            self.diagnostics,
            self.formula_cache,
        )

    def add_descriptor(self, function: Function, desc: ErrorDescriptor) -> None:
        self.descriptors.setdefault(function, set()).add(desc)

    def descriptors_for(self, function: Function) -> List[ErrorDescriptor]:
        return sorted_descriptors(self.descriptors.get(function, ()))

    def fact_for(self, bb: BasicBlock) -> Optional[BasicFact]:
        return self.basic_facts.get(bb)

    def functions(self) -> List[Function]:
        return sorted(self.descriptors, key=lambda f: f.handle)

    def _normalized(self) -> Dict[Function, FrozenSet[ErrorDescriptor]]:
        return {f: frozenset(ds) for f, ds in self.descriptors.items() if ds}

    def __eq__(self, other) -> bool:
        if not isinstance(other, ErrorSummary):
            return NotImplemented
        return (self._normalized() == other._normalized()
                and self.basic_facts == other.basic_facts)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        n = sum(len(ds) for ds in self.descriptors.values())
        return (f"ErrorSummary(functions={len(self.descriptors)}, "
                f"descriptors={n}, facts={len(self.basic_facts)})")


@dataclass
class ErrorState:
    """Knowledge the generalisation rules accumulate across iterations."""
    error_codes: Set[int] = field(default_factory=set)
    error_functions: Set[str] = field(default_factory=set)
    success_model: Dict[Function, Set[int]] = field(default_factory=dict)

    def success_codes(self) -> Set[int]:
        codes: Set[int] = set()
        for cs in self.success_model.values():
            codes |= cs
        return codes

    def add_success_code(self, function: Function, code: int) -> None:
        self.success_model.setdefault(function, set()).add(code)

    def success_codes_for(self, function: Function) -> Set[int]:
        return set(self.success_model.get(function, ()))

    def snapshot(self) -> Tuple[FrozenSet[int], FrozenSet[str]]:
        return frozenset(self.error_codes), frozenset(self.error_functions)
