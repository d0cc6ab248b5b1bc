"""
errinfer.ir
===========

A small SSA program representation for the error-handling inference
engine.

Each function in a :class:`Module` is a list of basic blocks (straight-line
instruction sequences ending in a terminator).  Every value - functions,
arguments, constants, blocks and instructions - receives a stable integer
*handle* from its module when it is created.  Equality and hashing are by
handle, so analysis state can be keyed by value without depending on
structural identity.

Public API
----------
    Module           - owns handles, functions, external declarations
    Function         - a defined function with arguments and blocks
    ExternalFunction - a declared-only (library) function
    GlobalAlias      - an alias for another value
    BasicBlock       - a block of instructions
    CallInst, ICmpInst, BranchInst, JumpInst, ReturnInst, CastInst,
    PhiInst, UnreachableInst
    IRBuilder        - imperative construction helper
    ignore_casts     - strip casts and aliases from a value
    strip_bitcasts   - strip bitcasts and aliases only
    constant_int_value

Typical usage::

    m = Module("libfoo")
    read = m.declare_external("read_block")
    f = m.add_function("load", params=[INT32])
    b = IRBuilder(f)
    entry, err, ok = b.blocks("entry", "err", "ok")
    b.position_at_end(entry)
    rc = b.call(read)
    b.br(b.icmp(CmpPredicate.SLT, rc, 0), err, ok)
    b.position_at_end(err)
    b.ret(-1)
    b.position_at_end(ok)
    b.ret(0)
"""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class TypeKind(enum.Enum):
    VOID = "void"
    INT = "int"
    POINTER = "pointer"


@dataclass(frozen=True)
class IRType:
    """A first-class IR type (void, iN or an opaque pointer)."""
    kind: TypeKind
    bits: int = 0

    @property
    def is_pointer(self) -> bool:
        return self.kind is TypeKind.POINTER

    @property
    def is_integer(self) -> bool:
        return self.kind is TypeKind.INT

    def __str__(self) -> str:
        if self.kind is TypeKind.INT:
            return f"i{self.bits}"
        if self.kind is TypeKind.POINTER:
            return "ptr"
        return "void"


VOID = IRType(TypeKind.VOID)
INT1 = IRType(TypeKind.INT, 1)
INT8 = IRType(TypeKind.INT, 8)
INT32 = IRType(TypeKind.INT, 32)
INT64 = IRType(TypeKind.INT, 64)
PTR = IRType(TypeKind.POINTER, 64)


class CmpPredicate(enum.Enum):
    """Integer comparison predicates (``icmp``)."""
    EQ = "eq"
    NE = "ne"
    UGT = "ugt"
    UGE = "uge"
    ULT = "ult"
    ULE = "ule"
    SGT = "sgt"
    SGE = "sge"
    SLT = "slt"
    SLE = "sle"


class CastKind(enum.Enum):
    BITCAST = "bitcast"
    TRUNC = "trunc"
    ZEXT = "zext"
    SEXT = "sext"
    INTTOPTR = "inttoptr"
    PTRTOINT = "ptrtoint"


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


class Value:
    """Base class of everything an instruction can reference."""

    __slots__ = ("handle", "name", "type")

    def __init__(self, handle: int, name: str, type_: IRType) -> None:
        self.handle: int = handle
        self.name: str = name
        self.type: IRType = type_

    def __hash__(self) -> int:
        return self.handle

    def __eq__(self, other) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return self.handle == other.handle

    def __repr__(self) -> str:
        label = self.name or f"%{self.handle}"
        return f"{type(self).__name__}({label})"


class ConstantInt(Value):
    """An integer constant.  Uniqued per (value, type) by its module.

    A ``ConstantInt`` with a pointer type stands for an integer-to-pointer
    constant expression such as ``(void *)-1``.
    """

    __slots__ = ("value",)

    def __init__(self, handle: int, value: int, type_: IRType) -> None:
        super().__init__(handle, str(value), type_)
        self.value: int = value


class ConstantPointerNull(Value):
    __slots__ = ()

    def __init__(self, handle: int) -> None:
        super().__init__(handle, "null", PTR)


class Argument(Value):
    __slots__ = ("function", "index")

    def __init__(self, handle: int, name: str, type_: IRType,
                 function: "Function", index: int) -> None:
        super().__init__(handle, name, type_)
        self.function = function
        self.index = index


class ExternalFunction(Value):
    """A function declared in the module but defined elsewhere."""

    __slots__ = ("module", "return_type")

    def __init__(self, handle: int, name: str, module: "Module",
                 return_type: IRType) -> None:
        super().__init__(handle, name, PTR)
        self.module = module
        self.return_type = return_type

    @property
    def returns_pointer(self) -> bool:
        return self.return_type.is_pointer


class Function(Value):
    """A function defined in the module."""

    __slots__ = ("module", "return_type", "arguments", "blocks")

    def __init__(self, handle: int, name: str, module: "Module",
                 return_type: IRType) -> None:
        super().__init__(handle, name, PTR)
        self.module = module
        self.return_type = return_type
        self.arguments: List[Argument] = []
        self.blocks: List[BasicBlock] = []

    @property
    def entry_block(self) -> Optional["BasicBlock"]:
        return self.blocks[0] if self.blocks else None

    @property
    def returns_pointer(self) -> bool:
        return self.return_type.is_pointer

    def add_block(self, name: str = "") -> "BasicBlock":
        bb = BasicBlock(self.module.next_handle(), name or f"bb{len(self.blocks)}",
                        self)
        self.blocks.append(bb)
        return bb

    def instructions(self) -> Iterable["Instruction"]:
        for bb in self.blocks:
            yield from bb.instructions


class GlobalAlias(Value):
    __slots__ = ("target",)

    def __init__(self, handle: int, name: str, target: Value) -> None:
        super().__init__(handle, name, target.type)
        self.target = target


class BasicBlock(Value):
    __slots__ = ("function", "instructions")

    def __init__(self, handle: int, name: str, function: Function) -> None:
        super().__init__(handle, name, VOID)
        self.function = function
        self.instructions: List[Instruction] = []

    @property
    def terminator(self) -> Optional["Instruction"]:
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None

    def append(self, inst: "Instruction") -> "Instruction":
        inst.block = self
        self.instructions.append(inst)
        return inst

    def phis(self) -> List["PhiInst"]:
        return [i for i in self.instructions if isinstance(i, PhiInst)]


# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------


class Instruction(Value):
    __slots__ = ("block",)

    is_terminator = False

    def __init__(self, handle: int, name: str, type_: IRType) -> None:
        super().__init__(handle, name, type_)
        self.block: Optional[BasicBlock] = None

    @property
    def function(self) -> Optional[Function]:
        return self.block.function if self.block is not None else None

    def successors(self) -> List[BasicBlock]:
        return []


class CallInst(Instruction):
    __slots__ = ("callee", "arguments")

    def __init__(self, handle: int, name: str, type_: IRType,
                 callee: Value, arguments: Sequence[Value]) -> None:
        super().__init__(handle, name, type_)
        self.callee = callee
        self.arguments: Tuple[Value, ...] = tuple(arguments)


class ICmpInst(Instruction):
    __slots__ = ("predicate", "lhs", "rhs")

    def __init__(self, handle: int, name: str, predicate: CmpPredicate,
                 lhs: Value, rhs: Value) -> None:
        super().__init__(handle, name, INT1)
        self.predicate = predicate
        self.lhs = lhs
        self.rhs = rhs


class CastInst(Instruction):
    __slots__ = ("kind", "value")

    def __init__(self, handle: int, name: str, kind: CastKind,
                 value: Value, type_: IRType) -> None:
        super().__init__(handle, name, type_)
        self.kind = kind
        self.value = value


class PhiInst(Instruction):
    __slots__ = ("incoming",)

    def __init__(self, handle: int, name: str, type_: IRType,
                 incoming: Sequence[Tuple[Value, BasicBlock]]) -> None:
        super().__init__(handle, name, type_)
        self.incoming: List[Tuple[Value, BasicBlock]] = list(incoming)

    def incoming_for(self, pred: BasicBlock) -> Optional[Value]:
        for value, block in self.incoming:
            if block == pred:
                return value
        return None


class BranchInst(Instruction):
    """Conditional branch."""
    __slots__ = ("condition", "true_target", "false_target")

    is_terminator = True

    def __init__(self, handle: int, condition: Value,
                 true_target: BasicBlock, false_target: BasicBlock) -> None:
        super().__init__(handle, "", VOID)
        self.condition = condition
        self.true_target = true_target
        self.false_target = false_target

    def successors(self) -> List[BasicBlock]:
        if self.true_target == self.false_target:
            return [self.true_target]
        return [self.true_target, self.false_target]


class JumpInst(Instruction):
    """Unconditional branch."""
    __slots__ = ("target",)

    is_terminator = True

    def __init__(self, handle: int, target: BasicBlock) -> None:
        super().__init__(handle, "", VOID)
        self.target = target

    def successors(self) -> List[BasicBlock]:
        return [self.target]


class ReturnInst(Instruction):
    __slots__ = ("value",)

    is_terminator = True

    def __init__(self, handle: int, value: Optional[Value]) -> None:
        super().__init__(handle, "", VOID)
        self.value = value


class UnreachableInst(Instruction):
    __slots__ = ()

    is_terminator = True

    def __init__(self, handle: int) -> None:
        super().__init__(handle, "", VOID)


# ---------------------------------------------------------------------------
# Module
# ---------------------------------------------------------------------------


class Module:
    """Owner of all values of one analysed program.

    Handles are allocated from a per-module counter, so two modules never
    interfere and a module built twice the same way gets the same handles.
    """

    def __init__(self, name: str = "module") -> None:
        self.name = name
        self._handles = itertools.count(1)
        self.functions: List[Function] = []
        self.externals: Dict[str, ExternalFunction] = {}
        self.aliases: Dict[str, GlobalAlias] = {}
        self._int_constants: Dict[Tuple[int, IRType], ConstantInt] = {}
        self._null: Optional[ConstantPointerNull] = None

    def next_handle(self) -> int:
        return next(self._handles)

    def const_int(self, value: int, type_: IRType = INT32) -> ConstantInt:
        key = (value, type_)
        c = self._int_constants.get(key)
        if c is None:
            c = ConstantInt(self.next_handle(), value, type_)
            self._int_constants[key] = c
        return c

    def null(self) -> ConstantPointerNull:
        if self._null is None:
            self._null = ConstantPointerNull(self.next_handle())
        return self._null

    def add_function(
        self,
        name: str,
        return_type: IRType = INT32,
        params: Sequence[Union[IRType, Tuple[str, IRType]]] = (),
    ) -> Function:
        f = Function(self.next_handle(), name, self, return_type)
        for i, p in enumerate(params):
            pname, ptype = p if isinstance(p, tuple) else (f"arg{i}", p)
            f.arguments.append(Argument(self.next_handle(), pname, ptype, f, i))
        self.functions.append(f)
        return f

    def declare_external(self, name: str,
                         return_type: IRType = INT32) -> ExternalFunction:
        ef = self.externals.get(name)
        if ef is None:
            ef = ExternalFunction(self.next_handle(), name, self, return_type)
            self.externals[name] = ef
        return ef

    def alias(self, name: str, target: Value) -> GlobalAlias:
        ga = GlobalAlias(self.next_handle(), name, target)
        self.aliases[name] = ga
        return ga

    def function(self, name: str) -> Optional[Function]:
        for f in self.functions:
            if f.name == name:
                return f
        return None

    def __repr__(self) -> str:
        return (f"Module({self.name!r}, functions={len(self.functions)}, "
                f"externals={len(self.externals)})")


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

Operand = Union[Value, int]


class IRBuilder:
    """Appends instructions to the current block of a function.

    Integer operands may be given as plain Python ints; they are turned into
    ``i32`` constants of the function's module.
    """

    def __init__(self, function: Function) -> None:
        self.function = function
        self.module = function.module
        self.block: Optional[BasicBlock] = None

    def blocks(self, *names: str) -> List[BasicBlock]:
        return [self.function.add_block(n) for n in names]

    def position_at_end(self, block: BasicBlock) -> "IRBuilder":
        self.block = block
        return self

    def _value(self, v: Operand) -> Value:
        if isinstance(v, Value):
            return v
        return self.module.const_int(int(v))

    def _insert(self, inst: Instruction) -> Instruction:
        if self.block is None:
            raise ValueError("IRBuilder has no insertion block")
        return self.block.append(inst)

    def call(self, callee: Value, *args: Operand, name: str = "",
             type_: Optional[IRType] = None) -> CallInst:
        if type_ is None:
            type_ = getattr(callee, "return_type", INT32)
        inst = CallInst(self.module.next_handle(), name, type_, callee,
                        [self._value(a) for a in args])
        return self._insert(inst)  # type: ignore[return-value]

    def icmp(self, predicate: CmpPredicate, lhs: Operand, rhs: Operand,
             name: str = "") -> ICmpInst:
        inst = ICmpInst(self.module.next_handle(), name, predicate,
                        self._value(lhs), self._value(rhs))
        return self._insert(inst)  # type: ignore[return-value]

    def cast(self, kind: CastKind, value: Operand, type_: IRType,
             name: str = "") -> CastInst:
        inst = CastInst(self.module.next_handle(), name, kind,
                        self._value(value), type_)
        return self._insert(inst)  # type: ignore[return-value]

    def phi(self, type_: IRType,
            incoming: Sequence[Tuple[Operand, BasicBlock]],
            name: str = "") -> PhiInst:
        inst = PhiInst(self.module.next_handle(), name, type_,
                       [(self._value(v), b) for v, b in incoming])
        # phis always lead the block
        inst.block = self.block
        if self.block is None:
            raise ValueError("IRBuilder has no insertion block")
        n = len(self.block.phis())
        self.block.instructions.insert(n, inst)
        return inst

    def br(self, condition: Value, true_target: BasicBlock,
           false_target: BasicBlock) -> BranchInst:
        inst = BranchInst(self.module.next_handle(), condition,
                          true_target, false_target)
        return self._insert(inst)  # type: ignore[return-value]

    def jump(self, target: BasicBlock) -> JumpInst:
        return self._insert(JumpInst(self.module.next_handle(), target))  # type: ignore[return-value]

    def ret(self, value: Optional[Operand] = None) -> ReturnInst:
        v = None if value is None else self._value(value)
        return self._insert(ReturnInst(self.module.next_handle(), v))  # type: ignore[return-value]

    def unreachable(self) -> UnreachableInst:
        return self._insert(UnreachableInst(self.module.next_handle()))  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def ignore_casts(value: Value) -> Value:
    """Strip casts, truncations, extensions, pointer/int conversions and
    aliases until a non-cast value is reached."""
    seen = set()
    while value.handle not in seen:
        seen.add(value.handle)
        if isinstance(value, CastInst):
            value = value.value
        elif isinstance(value, GlobalAlias):
            value = value.target
        else:
            break
    return value


def strip_bitcasts(value: Value) -> Value:
    """Like :func:`ignore_casts` but only looks through bitcasts and aliases."""
    seen = set()
    while value.handle not in seen:
        seen.add(value.handle)
        if isinstance(value, CastInst) and value.kind is CastKind.BITCAST:
            value = value.value
        elif isinstance(value, GlobalAlias):
            value = value.target
        else:
            break
    return value


def constant_int_value(value: Optional[Value]) -> Optional[int]:
    if isinstance(value, ConstantInt):
        return value.value
    return None


def called_function(call: CallInst) -> Optional[Union[Function, ExternalFunction]]:
    """The statically known callee of *call*, or ``None`` for indirect calls."""
    callee = strip_bitcasts(call.callee)
    if isinstance(callee, (Function, ExternalFunction)):
        return callee
    return None
