# errinfer/summaries.py
"""
External collaborators of the error-handling engine.

``DependencySummary``
    Annotations known before the run, typically for library functions the
    module only declares.  Looked up by function name.

``IndirectCallSummary``
    Candidate concrete callees of an indirect call target (a function
    pointer, a loaded value, ...).  How the candidates were computed is not
    this module's concern.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from errinfer.annotations import FuncAnnotation
from errinfer.ir import ExternalFunction, Function, Value, strip_bitcasts

logger = logging.getLogger(__name__)

Callee = Union[Function, ExternalFunction]


class DependencySummary:
    """Prior per-function annotations, keyed by function name."""

    def __init__(self,
                 annotations: Optional[Mapping[str, Sequence[FuncAnnotation]]] = None):
        self._annotations: Dict[str, List[FuncAnnotation]] = {
            name: list(annots) for name, annots in (annotations or {}).items()
        }

    def add(self, name: str, annotation: FuncAnnotation) -> None:
        self._annotations.setdefault(name, []).append(annotation)

    def lookup_function_summary(self, function: Value) -> Optional[List[FuncAnnotation]]:
        """Annotations for *function*, or ``None`` when nothing is known."""
        annots = self._annotations.get(function.name)
        if annots is None:
            return None
        return list(annots)

    def __contains__(self, name: str) -> bool:
        return name in self._annotations

    def __len__(self) -> int:
        return len(self._annotations)

    def __repr__(self) -> str:
        return f"DependencySummary({sorted(self._annotations)})"


class IndirectCallSummary:
    """Maps an indirect call target to its candidate callees."""

    def __init__(self, mapping: Optional[Mapping[Value, Iterable[Callee]]] = None):
        self._targets: Dict[Value, List[Callee]] = {}
        for value, callees in (mapping or {}).items():
            for c in callees:
                self.add(value, c)

    def add(self, value: Value, callee: Callee) -> None:
        targets = self._targets.setdefault(value, [])
        if callee not in targets:
            targets.append(callee)

    def targets(self, value: Value) -> List[Callee]:
        """Candidate callees of *value*, in insertion order."""
        found = self._targets.get(value)
        if found is None:
            found = self._targets.get(strip_bitcasts(value), [])
        return list(found)

    def __len__(self) -> int:
        return len(self._targets)


def call_targets(ics: IndirectCallSummary, callee: Value) -> List[Callee]:
    """The concrete functions a call through *callee* may reach.

    A direct callee (after stripping bitcasts and aliases) is its own
    single target; anything else is resolved through *ics*.
    """
    direct = strip_bitcasts(callee)
    if isinstance(direct, (Function, ExternalFunction)):
        return [direct]
    return ics.targets(callee)
